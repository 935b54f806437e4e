"""
AbortRegistry tests: in-process cancellation tokens.
"""

from core.abort_registry import AbortRegistry, get_abort_registry


class TestAbortRegistry:

    def test_signal_registered_operation(self):
        registry = AbortRegistry()
        token = registry.register("job-1")

        assert registry.signal("job-1") is True
        assert registry.is_signaled(token) is True

    def test_signal_unknown_operation_returns_false(self):
        assert AbortRegistry().signal("nothing") is False

    def test_none_token_is_never_signaled(self):
        assert AbortRegistry().is_signaled(None) is False

    def test_unregister_keeps_newer_token(self):
        registry = AbortRegistry()
        old = registry.register("job-1")
        new = registry.register("job-1")

        registry.unregister("job-1", old)

        assert registry.is_registered("job-1") is True
        registry.signal("job-1")
        assert registry.is_signaled(new) is True
        assert registry.is_signaled(old) is False

    def test_unregister_own_token(self):
        registry = AbortRegistry()
        token = registry.register("scope/es")
        registry.unregister("scope/es", token)

        assert registry.is_registered("scope/es") is False
        assert registry.signal("scope/es") is False

    def test_process_singleton(self):
        assert get_abort_registry() is get_abort_registry()
