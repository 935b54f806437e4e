"""
Audience Scoring - pure, in-memory evaluation of one audience.

The batch step loads the materialized visits and device origins once
(AudienceContext) and then scores every audience against it:

    segment      devices with at least min_frequency qualifying visits
                 (category in the audience, visit hour inside the time
                 window, dwell inside the bounds)
    home zone    each device's origin (first ping of its earliest visit day)
                 snapped to a lat/lng grid cell
    affinity     (share of the segment living in a zone)
                 / (share of all visiting devices living in that zone) * 100

An affinity of 100 means the zone is represented in the segment exactly as
in the visiting population; 200 means twice as strongly.

Exports:
    Visit, AudienceContext, AudienceScore
    build_context, score_audience, zone_for
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Set, Tuple

from core.models import ZoneAffinity

from .audience_catalog import AudienceDefinition


@dataclass(frozen=True)
class Visit:
    ad_id: str
    date: str
    poi_id: str
    category: str
    dwell_minutes: float
    visit_hour: int


@dataclass
class AudienceContext:
    """Everything the per-audience scoring needs, loaded once per batch."""
    visits: List[Visit]
    total_devices: int
    device_zones: Dict[str, str] = field(default_factory=dict)
    zone_centers: Dict[str, Tuple[float, float]] = field(default_factory=dict)

    @property
    def zone_population(self) -> Counter:
        return Counter(self.device_zones.values())


@dataclass
class AudienceScore:
    segment_devices: Set[str]
    segment_size: int
    segment_percent: float
    avg_dwell_minutes: float
    total_zones: int
    avg_affinity_index: float
    top_zones: List[ZoneAffinity]


def zone_for(lat: float, lng: float, grid_degrees: float) -> Tuple[str, float, float]:
    """Snap a coordinate to the grid; returns (zone_id, center_lat, center_lng)."""
    center_lat = round(round(lat / grid_degrees) * grid_degrees, 6)
    center_lng = round(round(lng / grid_degrees) * grid_degrees, 6)
    return f"{center_lat:.4f},{center_lng:.4f}", center_lat, center_lng


def parse_visits(rows: Iterable[Mapping[str, Any]]) -> List[Visit]:
    """Convert rows of the visits temp table."""
    visits = []
    for row in rows:
        visits.append(Visit(
            ad_id=str(row["ad_id"]),
            date=str(row["date"]),
            poi_id=str(row.get("poi_id", "")),
            category=str(row["category"]),
            dwell_minutes=float(row.get("dwell_minutes") or 0),
            visit_hour=int(row.get("visit_hour") or 0),
        ))
    return visits


def build_context(
    visits: List[Visit],
    origin_rows: Iterable[Mapping[str, Any]],
    total_devices: int,
    grid_degrees: float,
) -> AudienceContext:
    """
    Assign each visiting device a home zone.

    Origins at (0, 0) or unparseable are ignored; devices without any usable
    origin have no zone and only count towards segment size.
    """
    origins: Dict[Tuple[str, str], Tuple[float, float]] = {}
    for row in origin_rows:
        try:
            lat = float(row["origin_lat"])
            lng = float(row["origin_lng"])
        except (KeyError, TypeError, ValueError):
            continue
        if lat == 0 and lng == 0:
            continue
        origins[(str(row["ad_id"]), str(row["date"]))] = (lat, lng)

    device_dates: Dict[str, Set[str]] = defaultdict(set)
    for visit in visits:
        device_dates[visit.ad_id].add(visit.date)

    context = AudienceContext(visits=visits, total_devices=total_devices)
    for ad_id, dates in device_dates.items():
        for date in sorted(dates):
            origin = origins.get((ad_id, date))
            if origin is None:
                continue
            zone_id, center_lat, center_lng = zone_for(origin[0], origin[1], grid_degrees)
            context.device_zones[ad_id] = zone_id
            context.zone_centers[zone_id] = (center_lat, center_lng)
            break
    return context


def _qualifies(visit: Visit, audience: AudienceDefinition, categories: Set[str]) -> bool:
    if visit.category not in categories:
        return False
    if audience.time_window is not None and not audience.time_window.contains(visit.visit_hour):
        return False
    if audience.min_dwell_minutes is not None and visit.dwell_minutes < audience.min_dwell_minutes:
        return False
    if audience.max_dwell_minutes is not None and visit.dwell_minutes > audience.max_dwell_minutes:
        return False
    return True


def score_audience(
    audience: AudienceDefinition,
    context: AudienceContext,
    top_n: int = 20,
    min_zone_devices: int = 1,
) -> AudienceScore:
    """Evaluate one audience against the shared context."""
    categories = set(audience.categories)
    qualifying = [v for v in context.visits if _qualifies(v, audience, categories)]

    visits_per_device = Counter(v.ad_id for v in qualifying)
    segment = {ad_id for ad_id, count in visits_per_device.items() if count >= audience.min_frequency}
    segment_visits = [v for v in qualifying if v.ad_id in segment]

    segment_size = len(segment)
    segment_percent = round(segment_size / context.total_devices * 100, 2) if context.total_devices else 0.0
    avg_dwell = (
        round(sum(v.dwell_minutes for v in segment_visits) / len(segment_visits), 1)
        if segment_visits else 0.0
    )

    zones = _zone_affinities(segment, context)
    scored = [z for z in zones if z.segment_devices >= min_zone_devices]
    scored.sort(key=lambda z: (-z.affinity_index, -z.segment_devices, z.zone_id))
    avg_affinity = round(sum(z.affinity_index for z in zones) / len(zones), 1) if zones else 0.0

    return AudienceScore(
        segment_devices=segment,
        segment_size=segment_size,
        segment_percent=segment_percent,
        avg_dwell_minutes=avg_dwell,
        total_zones=len(zones),
        avg_affinity_index=avg_affinity,
        top_zones=scored[:top_n],
    )


def _zone_affinities(segment: Set[str], context: AudienceContext) -> List[ZoneAffinity]:
    population = context.zone_population
    population_total = sum(population.values())

    segment_zones = Counter(
        context.device_zones[ad_id] for ad_id in segment if ad_id in context.device_zones
    )
    segment_total = sum(segment_zones.values())
    if not segment_total or not population_total:
        return []

    affinities = []
    for zone_id, seg_count in segment_zones.items():
        zone_total = population[zone_id]
        segment_share = seg_count / segment_total
        population_share = zone_total / population_total
        lat, lng = context.zone_centers[zone_id]
        affinities.append(ZoneAffinity(
            zone_id=zone_id,
            lat=lat,
            lng=lng,
            segment_devices=seg_count,
            total_devices=zone_total,
            affinity_index=round(segment_share / population_share * 100, 1),
        ))
    return affinities
