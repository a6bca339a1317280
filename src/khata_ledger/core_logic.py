"""Runtime plumbing shared by every ledger manager.

The managers (inventory, credit ledger, payables, sales) never touch the
workbook directly; they receive a :class:`RuntimeContext` and mutate state only
inside :func:`unit_of_work`. The unit is the commit boundary of the store: the
outermost unit saves the workbook when its block succeeds and reloads the last
committed workbook when anything inside it raises, so a logical operation is
either fully persisted or not at all.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION

_CENT = Decimal("0.01")


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, customer, vendor, due or transaction is unknown."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when input values break a ledger invariant before anything is written."""


class ConflictError(BusinessRuleViolation):
    """Raised when another writer committed to the store during an operation."""


class StoreError(Exception):
    """Raised when the underlying workbook cannot be read or written."""


@dataclass(eq=False)
class RuntimeContext:
    """Configuration, live workbook and per-context caches used by the managers.

    ``workbook`` is replaced in place on rollback so that every holder of the
    context keeps seeing the committed state.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False)
    _lock: Any = field(default_factory=threading.RLock, repr=False)
    _depth: int = field(default=0, repr=False)
    _stamp: Optional[tuple[int, int, str]] = field(default=None, repr=False)


Money = Union[Decimal, int, str]


def resolve_timestamp(candidate: Optional[datetime] = None) -> datetime:
    """Return ``candidate`` or the current local time as an aware datetime."""

    return candidate if candidate is not None else datetime.now(UTC).astimezone()


def today_iso(when: Optional[datetime] = None) -> str:
    """Calendar date (``YYYY-MM-DD``) used for due, bill and expense dates."""

    return resolve_timestamp(when).date().isoformat()


# ---------------------------------------------------------------------------
# Cache buckets
# ---------------------------------------------------------------------------


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after a write.

    Without ``names`` every bucket is dropped. Unknown names are ignored.
    """

    targets = names or tuple(context._cache)
    if not targets:
        return
    log.debug("Invalidating cache buckets: %s", ", ".join(targets))
    for name in targets:
        context._cache.pop(name, None)


def cached_collection(
    context: RuntimeContext,
    name: str,
    loader: Callable[[Workbook], Iterable[Any]],
    key_attr: str,
) -> Dict[str, Any]:
    """Populate a cache bucket on demand.

    The bucket holds ``all`` (sheet order) and ``by_id`` (keyed by
    ``key_attr``). Subsequent calls reuse it until :func:`invalidate_cache`
    drops the bucket.
    """

    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        rows = list(loader(context.workbook))
        bucket["all"] = rows
        bucket["by_id"] = {getattr(row, key_attr): row for row in rows}
        log.debug("Populated '%s' cache with %d entries", name, len(rows))
    return bucket


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None, *, namespace: Optional[str] = None) -> RuntimeContext:
    """Load configuration settings and the live ledger workbook.

    Args:
        config_path (Path | None): Optional override path for ``config.ini``.
            When omitted the data layer searches upward from the current
            working directory.
        namespace (str | None): Opaque session identity. When given, the
            workbook ``<stem>_<namespace><suffix>`` beside the configured data
            file is used instead.

    Returns:
        RuntimeContext: Context ready for the ledger managers.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
        ValueError: If the namespace or a policy option is invalid.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    if namespace:
        settings = replace(
            settings,
            data_file=data_manager.namespaced_data_file(settings.data_file, namespace),
        )
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(
        settings=settings,
        workbook=workbook,
        _stamp=data_manager.file_stamp(settings.data_file),
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to operate on a workbook declared with another schema version.

    Raises:
        RuntimeError: If ``config.ini`` declares a version other than
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save the in-memory workbook to the configured data file.

    Raises:
        ConflictError: If the file changed on disk since it was loaded or last
            saved through this context.
        StoreError: If the file cannot be written.
    """

    data_file = context.settings.data_file
    current = data_manager.file_stamp(data_file)
    if context._stamp is not None and current != context._stamp:
        log.error("Workbook '%s' was modified by another writer", data_file)
        raise ConflictError(f"Workbook '{data_file}' was modified by another writer; reload and retry")
    try:
        data_manager.save_workbook(context.workbook, destination=data_file)
    except OSError as exc:
        log.error("Unable to save workbook '%s': %s", data_file, exc)
        raise StoreError(f"Unable to save workbook '{data_file}': {exc}") from exc
    context._stamp = data_manager.file_stamp(data_file)
    log.debug("Persisted workbook '%s'", data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Return a fresh context over the committed workbook, dropping unsaved edits.

    Raises:
        StoreError: If the workbook cannot be reloaded.
    """

    workbook = _reload_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        _stamp=data_manager.file_stamp(context.settings.data_file),
    )


def _reload_workbook(data_file: Path) -> Workbook:
    try:
        return data_manager.refresh_workbook(data_file)
    except OSError as exc:
        raise StoreError(f"Unable to reload workbook '{data_file}': {exc}") from exc


def _rollback(context: RuntimeContext) -> None:
    invalidate_cache(context)
    context.workbook = _reload_workbook(context.settings.data_file)
    context._stamp = data_manager.file_stamp(context.settings.data_file)


@contextmanager
def unit_of_work(context: RuntimeContext, operation: str) -> Iterator[RuntimeContext]:
    """Run a block of mutations as one committable unit.

    Writers are serialised by the context lock. A unit opened while another is
    active on the same context joins it, so only the outermost unit commits.
    On success the workbook is saved; on any exception the last committed
    workbook is reloaded, caches are cleared and the exception propagates.
    """

    with context._lock:
        if context._depth:
            context._depth += 1
            try:
                yield context
            finally:
                context._depth -= 1
            return

        context._depth = 1
        try:
            yield context
            persist_context(context)
        except Exception as exc:
            log.warning("Rolling back '%s': %s", operation, exc)
            try:
                _rollback(context)
            except StoreError as rollback_exc:
                log.error("Rollback of '%s' failed; original error: %r", operation, exc)
                raise rollback_exc from exc
            raise
        finally:
            context._depth = 0
        log.debug("Committed '%s'", operation)


# ---------------------------------------------------------------------------
# Identifiers and validation
# ---------------------------------------------------------------------------


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier such as ``T20250102093000123456-3F9A``.

    The timestamp keeps identifiers in chronological order; the random suffix
    separates records created within the same clock tick.
    """

    when = resolve_timestamp(when)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:4].upper()}"


def parse_money(value: Money, *, field_name: str = "amount") -> Decimal:
    """Coerce user input into a :class:`Decimal` rounded to cents.

    Rounding matches :func:`data_manager.to_money`, so an amount validated
    here is the amount the store reads back.

    Raises:
        ValidationError: If ``value`` is not a finite number.
    """

    if isinstance(value, float):
        value = str(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid {field_name}: {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid {field_name}: {value!r}")
    try:
        return amount.quantize(_CENT)
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid {field_name}: {value!r}") from exc


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a whole number strictly above zero.

    Raises:
        ValidationError: If ``quantity`` is not an ``int`` or is below one.
    """

    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.warning("Quantity validation failed: %r", quantity)
        raise ValidationError("Quantity must be a whole number greater than zero")


def require_positive_money(amount: Decimal, *, field_name: str = "amount") -> None:
    if amount <= Decimal("0"):
        log.warning("Monetary validation failed for %s: %s", field_name, amount)
        raise ValidationError(f"{field_name.capitalize()} must be greater than zero")


def require_nonnegative_money(amount: Decimal, *, field_name: str = "amount") -> None:
    """Validate that a monetary value is zero or positive.

    Raises:
        ValidationError: If ``amount`` is below zero.
    """

    if amount < Decimal("0"):
        log.warning("Monetary validation failed for %s: %s", field_name, amount)
        raise ValidationError(f"{field_name.capitalize()} must be zero or positive")


def require_text(value: Optional[str], *, field_name: str) -> str:
    """Return ``value`` stripped, rejecting blank input."""

    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} is required")
    return text
