"""Copy legacy collections into the canonical tree without overwriting anything.

Every legacy record is checked against its canonical path first; existing
canonical records are skipped, so re-running a migration is a no-op for keys
already migrated. Failures are isolated per record and per collection and
collected into reports instead of being raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field

from .errors import MalformedRecordError
from .normalizer import normalize_course, normalize_enrollment, normalize_module, normalize_progress, normalize_user
from .paths import EntityType, PathRegistry, coerce_entity_type, get_registry
from .store import DocumentStore
from .telemetry import EventName, emit_event

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LegacyCollection:
    """A legacy collection and how its records map onto canonical keys.

    ``depth`` is the number of key levels below ``source``. ``target`` is set
    for collections copied verbatim to a location outside the entity layouts.
    """

    source: str
    depth: int = 1
    inject: Tuple[Tuple[str, Any], ...] = ()
    target: Optional[str] = None


MIGRATIONS: Dict[EntityType, Tuple[LegacyCollection, ...]] = {
    EntityType.USER: (
        LegacyCollection("{legacy}/Administrateurs", inject=(("role", "admin"),)),
        LegacyCollection("{legacy}/Formateurs", inject=(("role", "instructor"),)),
        LegacyCollection("{legacy}/Apprenants", inject=(("role", "student"),)),
        LegacyCollection("{legacy}/Utilisateurs"),
    ),
    EntityType.COURSE: (LegacyCollection("{legacy}/Cours"),),
    EntityType.SPECIALTY: (LegacyCollection("{legacy}/Formations"),),
    EntityType.DISCIPLINE: (LegacyCollection("{legacy}/Disciplines"),),
    EntityType.ENROLLMENT: (LegacyCollection("{legacy}/Inscriptions", depth=2),),
    EntityType.MESSAGE: (LegacyCollection("{legacy}/Messages"),),
    EntityType.EVALUATION: (LegacyCollection("{legacy}/Evaluations", target="{root}/evaluations"),),
    EntityType.PROGRESS: (LegacyCollection("{legacy}/Progression", depth=2),),
    EntityType.MODULE: (
        LegacyCollection("{root}/modules", depth=2),
        LegacyCollection("{legacy}/Modules", depth=2),
    ),
}

# Collections covered by the one-shot standardization run, in run order.
STANDARDIZATION_ORDER: Tuple[EntityType, ...] = (
    EntityType.USER,
    EntityType.COURSE,
    EntityType.SPECIALTY,
    EntityType.DISCIPLINE,
    EntityType.ENROLLMENT,
    EntityType.MESSAGE,
    EntityType.EVALUATION,
    EntityType.PROGRESS,
)

LEGACY_DATA: Tuple[Tuple[str, EntityType], ...] = (
    ("enrollments", EntityType.ENROLLMENT),
    ("progress", EntityType.PROGRESS),
    ("specialties", EntityType.SPECIALTY),
)

_GENERIC_TYPES = frozenset(
    {EntityType.SPECIALTY, EntityType.DISCIPLINE, EntityType.MESSAGE, EntityType.EVALUATION}
)


class MigrationIssue(BaseModel):
    path: str
    error: str


class CollectionReport(BaseModel):
    collection: str
    found: bool = False
    migrated: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    errors: List[MigrationIssue] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class MigrationResult(BaseModel):
    entity_type: str
    migrated: bool = True
    errors: List[MigrationIssue] = Field(default_factory=list)
    collections: List[CollectionReport] = Field(default_factory=list)

    @property
    def source_found(self) -> bool:
        return any(report.found for report in self.collections)


def _as_record(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, Mapping):
        raise MalformedRecordError(f"Expected a mapping record, got {type(raw).__name__}")
    return dict(raw)


def _entries(raw: Any) -> Iterator[Tuple[str, Any]]:
    if isinstance(raw, Mapping):
        for key, value in raw.items():
            yield str(key), value
    elif isinstance(raw, list):
        for index, value in enumerate(raw):
            if value is None:
                continue
            declared = value.get("id") if isinstance(value, Mapping) else None
            yield str(declared or index), value


def _walk(raw: Any, depth: int, prefix: Tuple[str, ...] = ()) -> Iterator[Tuple[Tuple[str, ...], Any]]:
    """Yield ``(keys, record)`` for every leaf ``depth`` levels below ``raw``."""
    for key, value in _entries(raw):
        keys = prefix + (key,)
        if depth == 1:
            yield keys, value
        elif isinstance(value, (Mapping, list)):
            yield from _walk(value, depth - 1, keys)
        else:
            # a scalar where a nested level is expected is itself a bad record
            yield keys, value


class MigrationEngine:
    """Store-to-store migration from the legacy tree into the canonical tree."""

    def __init__(
        self,
        store: DocumentStore,
        registry: Optional[PathRegistry] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.store = store
        self.registry = registry or get_registry()
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock().timestamp() * 1000)

    def _now_iso(self) -> str:
        return self.clock().astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _render(self, template: str) -> str:
        return template.format(root=self.registry.root, legacy=self.registry.legacy_root)

    # entity-level ----------------------------------------------------------

    async def migrate(self, entity_type: Union[EntityType, str]) -> MigrationResult:
        kind = coerce_entity_type(entity_type)
        result = MigrationResult(entity_type=kind.value)
        for legacy in MIGRATIONS.get(kind, ()):
            report = await self._migrate_collection(kind, legacy)
            result.collections.append(report)
            result.errors.extend(report.errors)
        result.migrated = not result.errors
        return result

    async def migrate_all(self) -> Dict[str, MigrationResult]:
        results: Dict[str, MigrationResult] = {}
        for kind in MIGRATIONS:
            results[kind.value] = await self.migrate(kind)
        self._emit_run(results)
        return results

    async def _migrate_collection(self, kind: EntityType, legacy: LegacyCollection) -> CollectionReport:
        source = self._render(legacy.source)
        report = CollectionReport(collection=source)
        try:
            raw = await self.store.get(source)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not read legacy collection %s: %s", source, exc)
            report.errors.append(MigrationIssue(path=source, error=str(exc)))
            return report
        if raw is None:
            logger.debug("Legacy collection %s is empty", source)
            return report

        report.found = True
        for keys, record in _walk(raw, legacy.depth):
            path = "/".join((source,) + keys)
            try:
                written = await self._migrate_record(kind, legacy, keys, record)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to migrate %s: %s", path, exc)
                report.errors.append(MigrationIssue(path=path, error=str(exc)))
                continue
            (report.migrated if written else report.skipped).append(path)

        logger.info(
            "Migrated %s: %d migrated, %d skipped, %d errors",
            source,
            len(report.migrated),
            len(report.skipped),
            len(report.errors),
        )
        emit_event(
            EventName.MIGRATION_COLLECTION_COMPLETED,
            collection=source,
            migrated=len(report.migrated),
            skipped=len(report.skipped),
            errors=len(report.errors),
        )
        return report

    async def _migrate_record(
        self,
        kind: EntityType,
        legacy: LegacyCollection,
        keys: Tuple[str, ...],
        raw: Any,
    ) -> bool:
        """Write one legacy record; False when every target already existed."""
        if legacy.target is not None:
            targets = ["/".join((self._render(legacy.target),) + keys)]
        else:
            targets = [self.registry.canonical_path(kind, *keys), *self.registry.mirror_paths(kind, *keys)]

        if kind is EntityType.ENROLLMENT:
            # each index is checked and filled on its own
            document = self._transform(kind, keys, raw, legacy)
            written = False
            for target in targets:
                if await self.store.exists(target):
                    continue
                await self.store.set(target, document)
                written = True
            return written

        if await self.store.exists(targets[0]):
            return False
        document = self._transform(kind, keys, raw, legacy)
        for target in targets:
            await self.store.set(target, document)
        return True

    def _transform(self, kind: EntityType, keys: Tuple[str, ...], raw: Any, legacy: LegacyCollection) -> Dict[str, Any]:
        now_ms = self._now_ms()
        if kind is EntityType.USER:
            data = {**_as_record(raw), **dict(legacy.inject)}
            data["createdAt"] = data.get("createdAt") or now_ms
            data["updatedAt"] = now_ms
            return normalize_user(data, keys[0]).to_document()
        if kind is EntityType.ENROLLMENT:
            enrollment = normalize_enrollment(raw, keys[0], keys[1])
            if not enrollment.enrolled_at:
                enrollment.enrolled_at = now_ms
            return enrollment.to_document()
        if kind is EntityType.PROGRESS:
            now_iso = self._now_iso()
            record = normalize_progress(_as_record(raw), keys[0], keys[1])
            record.start_date = record.start_date or now_iso
            record.last_updated = record.last_updated or now_iso
            for module in record.modules.values():
                module.last_updated = module.last_updated or now_iso
            return record.to_document()
        if kind is EntityType.MODULE:
            data = _as_record(raw)
            data["createdAt"] = data.get("createdAt") or now_ms
            data["updatedAt"] = now_ms
            return normalize_module(data, course_id=keys[0], module_id=keys[1]).to_document()
        if kind is EntityType.COURSE:
            # embedded modules land as an id-keyed map, never as an array
            data = _as_record(raw)
            data["createdAt"] = data.get("createdAt") or now_ms
            data["updatedAt"] = now_ms
            return normalize_course(data, keys[0]).to_document()
        if kind in _GENERIC_TYPES:
            data = _as_record(raw)
            data["updatedAt"] = now_ms
            data["createdAt"] = data.get("createdAt") or now_ms
            return data
        raise MalformedRecordError(f"No migration transform for {kind.value}")

    def _emit_run(self, results: Mapping[str, MigrationResult]) -> None:
        emit_event(
            EventName.MIGRATION_RUN_COMPLETED,
            entity_types=sorted(results),
            success=all(result.migrated for result in results.values()),
            errors=sum(len(result.errors) for result in results.values()),
        )

    # collaborator-facing ---------------------------------------------------

    async def migrate_legacy_data(self) -> Dict[str, MigrationResult]:
        """Full reports for the enrollments, progress and specialties migrations."""
        return {name: await self.migrate(kind) for name, kind in LEGACY_DATA}

    async def migrate_all_data(self) -> Dict[str, bool]:
        """True per area when a legacy source existed and moved without errors."""
        results = await self.migrate_legacy_data()
        outcome = {name: result.migrated and result.source_found for name, result in results.items()}
        logger.info("Legacy data migration results: %s", outcome)
        return outcome

    async def run_database_standardization(self) -> Dict[str, Any]:
        try:
            results: Dict[str, MigrationResult] = {}
            for kind in STANDARDIZATION_ORDER:
                results[kind.value] = await self.migrate(kind)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Database standardization failed")
            return {"success": False, "message": f"Error: {exc}", "details": {"error": str(exc)}}

        self._emit_run(results)
        migrated: List[str] = []
        errors: List[Dict[str, str]] = []
        for result in results.values():
            for report in result.collections:
                if report.found and report.ok:
                    migrated.append(report.collection)
                errors.extend(issue.model_dump() for issue in report.errors)
        success = not errors
        if success:
            message = f"Migration completed successfully. Migrated: {', '.join(migrated)}"
        else:
            message = "Migration completed with errors: " + "; ".join(
                f"{issue['path']}: {issue['error']}" for issue in errors
            )
        return {
            "success": success,
            "message": message,
            "details": {"success": success, "migrated": migrated, "errors": errors},
        }

    async def initialize_database(self) -> Optional[Dict[str, Any]]:
        """Standardize on startup when any legacy data is present."""
        try:
            has_legacy = await self.store.exists(self.registry.legacy_root)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not check for legacy data: %s", exc)
            return None
        if not has_legacy:
            logger.info("No legacy tree under %s; nothing to migrate", self.registry.legacy_root)
            return None
        logger.info("Legacy tree found under %s; running standardization", self.registry.legacy_root)
        return await self.run_database_standardization()


__all__ = [
    "CollectionReport",
    "LEGACY_DATA",
    "LegacyCollection",
    "MIGRATIONS",
    "MigrationEngine",
    "MigrationIssue",
    "MigrationResult",
    "STANDARDIZATION_ORDER",
]
