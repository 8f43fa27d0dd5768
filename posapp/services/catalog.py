"""Model catalog replacement and propagation onto inventory rows.

The catalog is replaced wholesale. Archetypes are matched to their previous
version by stable id, so a rename is simply "same id, new name"; no pairing
of removed and added names is attempted. Entries sent without an id edit the
existing archetype of the same name, if any. Whatever the edit implies for
existing product rows (new name, new price, renamed or removed storage and
color values) is written as a list of idempotent steps into a
:class:`CatalogPropagationJob` in the same transaction as the catalog itself.

The job runs after the catalog commit in its own transaction. When it fails
the catalog stays committed, the failure is logged and recorded on the job,
and ``flask propagate-catalog`` picks it up again later. Order item price
snapshots are never touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from posapp.errors import CatalogPropagationError, ValidationError
from posapp.models import (
    CatalogPropagationJob,
    ModelArchetype,
    Product,
    ProductCategory,
    PropagationStatus,
)
from posapp.services.order_lines import parse_amount, parse_int, parse_warranty
from posapp.services.pricing import to_money
from posapp.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
MAX_LABEL_LENGTH = 100
PROPAGATED_FIELDS = ("storage", "color")


@dataclass(frozen=True)
class ArchetypeSpec:
    name: str
    id: int | None = None
    price: Decimal | None = None
    warranty: int | None = None
    storages: tuple[str, ...] = ()
    colors: tuple[str, ...] = ()
    condition: str | None = None
    subcategory: str | None = None
    storage_prices: Mapping[str, Decimal] = field(default_factory=dict)

    def effective_price(self, storage: str) -> Decimal | None:
        return self.storage_prices.get(storage, self.price)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _clean_value(value: Any, label: str) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValidationError(f"{label} must be an array of strings")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _optional_label(entry: Mapping[str, Any], key: str, label: str) -> str | None:
    value = entry.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Model {label} must be a string")
    value = value.strip()
    if len(value) > MAX_LABEL_LENGTH:
        raise ValidationError(
            f"Model {label} must be less than {MAX_LABEL_LENGTH} characters"
        )
    return value or None


def parse_archetype(entry: Any) -> ArchetypeSpec:
    if not isinstance(entry, Mapping):
        raise ValidationError("Each model must be an object")

    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Model name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Model name must be less than {MAX_NAME_LENGTH} characters"
        )

    archetype_id = entry.get("id")
    if archetype_id is not None:
        archetype_id = parse_int(archetype_id, "Model id")

    storages = entry.get("storages", [])
    if not isinstance(storages, (list, tuple)):
        raise ValidationError("Model storages must be an array of strings")
    colors = entry.get("colors", [])
    if not isinstance(colors, (list, tuple)):
        raise ValidationError("Model colors must be string array")
    if any(not isinstance(color, str) for color in colors):
        raise ValidationError("Model colors must be string array")

    price = entry.get("price")
    if price is not None:
        price = to_money(parse_amount(price, "Model price"))

    raw_storage_prices = entry.get("storage_prices") or {}
    if not isinstance(raw_storage_prices, Mapping):
        raise ValidationError("storage_prices must be an object")
    storage_prices: dict[str, Decimal] = {}
    for storage, storage_price in raw_storage_prices.items():
        key = _clean_value(storage, "storage_prices keys")
        storage_prices[key] = to_money(parse_amount(storage_price, "storage_prices values"))

    return ArchetypeSpec(
        id=archetype_id,
        name=name,
        price=price,
        warranty=parse_warranty(entry.get("warranty")),
        storages=tuple(_clean_value(value, "Model storages") for value in storages),
        colors=tuple(color.strip() for color in colors),
        condition=_optional_label(entry, "condition", "condition"),
        subcategory=_optional_label(entry, "subcategory", "subcategory"),
        storage_prices=storage_prices,
    )


def parse_catalog(raw_catalog: Any) -> list[ArchetypeSpec]:
    if not isinstance(raw_catalog, (list, tuple)):
        raise ValidationError("smartphone_models must be an array")

    specs = [parse_archetype(entry) for entry in raw_catalog]

    seen_names: set[str] = set()
    seen_ids: set[int] = set()
    for spec in specs:
        lowered = spec.name.lower()
        if lowered in seen_names:
            raise ValidationError(f"Model name {spec.name!r} is listed more than once")
        seen_names.add(lowered)
        if spec.id is not None:
            if spec.id in seen_ids:
                raise ValidationError(f"Model id {spec.id} is listed more than once")
            seen_ids.add(spec.id)
    return specs


def snapshot(archetype: ModelArchetype) -> ArchetypeSpec:
    return ArchetypeSpec(
        id=archetype.id,
        name=archetype.name,
        price=None if archetype.price is None else to_money(archetype.price),
        warranty=archetype.warranty,
        storages=tuple(archetype.storages or ()),
        colors=tuple(archetype.colors or ()),
        condition=archetype.condition,
        subcategory=archetype.subcategory,
        storage_prices={
            key: to_money(value) for key, value in (archetype.storage_prices or {}).items()
        },
    )


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def _value_steps(
    field_name: str,
    previous: Iterable[str],
    updated: Iterable[str],
    model_id: int,
    model: str,
) -> list[dict[str, Any]]:
    previous = list(previous)
    updated = list(updated)
    previous_lower = {value.lower() for value in previous}
    updated_lower = {value.lower() for value in updated}

    steps: list[dict[str, Any]] = []
    renamed: set[str] = set()
    if len(previous) == len(updated):
        for old_value, new_value in zip(previous, updated):
            if not new_value or old_value.lower() == new_value.lower():
                continue
            # Reorderings are not renames: the old value must be gone and the
            # new one must be fresh.
            if old_value.lower() in updated_lower or new_value.lower() in previous_lower:
                continue
            steps.append(
                {
                    "op": "rename_value",
                    "field": field_name,
                    "model_id": model_id,
                    "model": model,
                    "from": old_value,
                    "to": new_value,
                }
            )
            renamed.add(old_value.lower())

    for old_value in previous:
        lowered = old_value.lower()
        if lowered in updated_lower or lowered in renamed:
            continue
        steps.append(
            {
                "op": "clear_value",
                "field": field_name,
                "model_id": model_id,
                "model": model,
                "value": old_value,
            }
        )
    return steps


def _price_steps(previous: ArchetypeSpec, updated: ArchetypeSpec, model_id: int) -> list[dict[str, Any]]:
    steps: list[dict[str, Any]] = []
    overridden = sorted(updated.storage_prices)

    base_pushed = updated.price is not None and updated.price != previous.price
    if base_pushed:
        steps.append(
            {
                "op": "set_price",
                "model_id": model_id,
                "model": updated.name,
                "price": str(updated.price),
                "storage": None,
                "exclude_storages": overridden,
            }
        )

    for storage in sorted(set(previous.storage_prices) | set(updated.storage_prices)):
        new_price = updated.effective_price(storage)
        if new_price is None or new_price == previous.effective_price(storage):
            continue
        if base_pushed and storage not in updated.storage_prices:
            continue
        steps.append(
            {
                "op": "set_price",
                "model_id": model_id,
                "model": updated.name,
                "price": str(new_price),
                "storage": storage,
                "exclude_storages": [],
            }
        )
    return steps


def plan_propagation(previous: ArchetypeSpec | None, updated: ArchetypeSpec, model_id: int) -> list[dict[str, Any]]:
    """Steps that bring product rows in line with one archetype edit."""

    if previous is None:
        return [{"op": "link_model", "model_id": model_id, "model": updated.name}]

    steps: list[dict[str, Any]] = []
    if previous.name != updated.name:
        steps.append(
            {
                "op": "rename_model",
                "model_id": model_id,
                "from": previous.name,
                "to": updated.name,
            }
        )
    steps.extend(
        _value_steps("storage", previous.storages, updated.storages, model_id, updated.name)
    )
    steps.extend(
        _value_steps("color", previous.colors, updated.colors, model_id, updated.name)
    )
    steps.extend(_price_steps(previous, updated, model_id))
    return steps


# ---------------------------------------------------------------------------
# Applying steps
# ---------------------------------------------------------------------------


def _model_filter(model_id: int, model: str):
    # Rows imported before archetypes had ids only carry the display name.
    # Accessories may name a phone model but never take its attributes.
    return and_(
        Product.category == ProductCategory.SERIALIZED,
        or_(
            Product.model_id == model_id,
            and_(Product.model_id.is_(None), Product.model == model),
        ),
    )


def _field_column(step: Mapping[str, Any]):
    field_name = step.get("field")
    if field_name not in PROPAGATED_FIELDS:
        raise ValueError(f"Unsupported propagation field {field_name!r}")
    return getattr(Product, field_name)


def _statement_for(step: Mapping[str, Any]):
    op = step.get("op")
    if op == "link_model":
        return (
            update(Product)
            .where(
                Product.category == ProductCategory.SERIALIZED,
                Product.model_id.is_(None),
                Product.model == step["model"],
            )
            .values(model_id=step["model_id"])
        )
    if op == "rename_model":
        return (
            update(Product)
            .where(_model_filter(step["model_id"], step["from"]))
            .values(model=step["to"], model_id=step["model_id"])
        )
    if op == "set_price":
        criteria = [_model_filter(step["model_id"], step["model"])]
        if step.get("storage") is not None:
            criteria.append(Product.storage == step["storage"])
        elif step.get("exclude_storages"):
            criteria.append(
                or_(
                    Product.storage.is_(None),
                    Product.storage.not_in(step["exclude_storages"]),
                )
            )
        return update(Product).where(*criteria).values(price=Decimal(step["price"]))
    if op == "rename_value":
        column = _field_column(step)
        return (
            update(Product)
            .where(_model_filter(step["model_id"], step["model"]), column == step["from"])
            .values({column: step["to"]})
        )
    if op == "clear_value":
        column = _field_column(step)
        return (
            update(Product)
            .where(_model_filter(step["model_id"], step["model"]), column == step["value"])
            .values({column: None})
        )
    raise ValueError(f"Unknown propagation step {op!r}")


def apply_steps(session: Session, job_id: int, steps: Iterable[Mapping[str, Any]]) -> int:
    affected = 0
    for step in steps:
        try:
            statement = _statement_for(step)
            result = session.execute(
                statement.execution_options(synchronize_session=False)
            )
        except (SQLAlchemyError, ValueError, KeyError) as exc:
            raise CatalogPropagationError(job_id, f"{step.get('op')}: {exc}") from exc
        affected += max(result.rowcount or 0, 0)
    return affected


def _record_failure(job_id: int, error: CatalogPropagationError) -> bool:
    logger.exception("%s", error.message)
    with UnitOfWork() as uow:
        job = uow.session.get(CatalogPropagationJob, job_id)
        job.attempts = (job.attempts or 0) + 1
        job.status = PropagationStatus.FAILED
        job.last_error = str(error.__cause__ or error)
    return False


def run_job(job_id: int) -> bool:
    """Apply one job in its own transaction; record the outcome on the job.

    Failures, including one raised by the final commit, are recorded on the
    job and never raised: the catalog write that queued it is already
    committed.
    """

    try:
        with UnitOfWork() as uow:
            job = uow.session.get(CatalogPropagationJob, job_id)
            if job is None:
                raise ValidationError(f"Propagation job {job_id} does not exist")
            steps = list(job.steps or [])
            affected = apply_steps(uow.session, job_id, steps)
            job.attempts = (job.attempts or 0) + 1
            job.status = PropagationStatus.DONE
            job.last_error = None
            job.completed_at = datetime.utcnow()
    except CatalogPropagationError as exc:
        return _record_failure(job_id, exc)
    except SQLAlchemyError as exc:
        error = CatalogPropagationError(job_id, str(exc))
        error.__cause__ = exc
        return _record_failure(job_id, error)

    logger.info(
        "Propagation job %s applied %s step(s) touching %s product row(s)",
        job_id,
        len(steps),
        affected,
    )
    return True


def run_pending_propagations(limit: int | None = None) -> dict[str, Any]:
    max_attempts = current_app.config.get("CATALOG_PROPAGATION_MAX_ATTEMPTS", 5)
    with UnitOfWork() as uow:
        query = (
            select(CatalogPropagationJob.id)
            .where(
                CatalogPropagationJob.status.in_(PropagationStatus.RUNNABLE_STATES),
                CatalogPropagationJob.attempts < max_attempts,
            )
            .order_by(CatalogPropagationJob.id)
        )
        if limit is not None:
            query = query.limit(limit)
        job_ids = list(uow.session.execute(query).scalars())

    succeeded: list[int] = []
    failed: list[int] = []
    for job_id in job_ids:
        if run_job(job_id):
            succeeded.append(job_id)
        else:
            failed.append(job_id)

    return {"processed": len(job_ids), "succeeded": succeeded, "failed": failed}


# ---------------------------------------------------------------------------
# Catalog replacement
# ---------------------------------------------------------------------------


def serialize_archetype(archetype: ModelArchetype) -> dict[str, Any]:
    return {
        "id": archetype.id,
        "name": archetype.name,
        "price": None if archetype.price is None else to_money(archetype.price),
        "warranty": archetype.warranty,
        "storages": list(archetype.storages or []),
        "colors": list(archetype.colors or []),
        "condition": archetype.condition,
        "subcategory": archetype.subcategory,
        "storage_prices": {
            key: to_money(value) for key, value in (archetype.storage_prices or {}).items()
        },
    }


def _ordered_catalog(session: Session) -> list[ModelArchetype]:
    return list(
        session.execute(
            select(ModelArchetype).order_by(ModelArchetype.position, ModelArchetype.id)
        ).scalars()
    )


def get_catalog() -> list[dict[str, Any]]:
    with UnitOfWork() as uow:
        return [serialize_archetype(archetype) for archetype in _ordered_catalog(uow.session)]


def _apply_spec(archetype: ModelArchetype, spec: ArchetypeSpec, position: int) -> None:
    archetype.name = spec.name
    archetype.position = position
    archetype.price = spec.price
    archetype.warranty = spec.warranty
    archetype.storages = list(spec.storages)
    archetype.colors = list(spec.colors)
    archetype.condition = spec.condition
    archetype.subcategory = spec.subcategory
    archetype.storage_prices = {key: str(value) for key, value in spec.storage_prices.items()}


def _claim_by_name(
    specs: list[ArchetypeSpec], current: Mapping[int, ModelArchetype]
) -> list[ArchetypeSpec]:
    """Give id-less entries the id of the unclaimed archetype with their name.

    Clients that only send names still edit the existing archetype instead of
    deleting and recreating it.
    """

    claimed = {spec.id for spec in specs if spec.id is not None}
    unclaimed = {
        archetype.name.lower(): archetype_id
        for archetype_id, archetype in current.items()
        if archetype_id not in claimed
    }
    resolved = []
    for spec in specs:
        if spec.id is None:
            archetype_id = unclaimed.pop(spec.name.lower(), None)
            if archetype_id is not None:
                spec = replace(spec, id=archetype_id)
        resolved.append(spec)
    return resolved


def replace_catalog(raw_catalog: Any, *, propagate: bool | None = None) -> dict[str, Any]:
    specs = parse_catalog(raw_catalog)
    if propagate is None:
        propagate = current_app.config.get("CATALOG_PROPAGATE_ON_REPLACE", True)

    with UnitOfWork() as uow:
        session = uow.session
        current = {
            archetype.id: archetype
            for archetype in session.execute(select(ModelArchetype)).scalars()
        }
        unknown = sorted(spec.id for spec in specs if spec.id is not None and spec.id not in current)
        if unknown:
            raise ValidationError(
                f"Unknown model id(s): {', '.join(str(value) for value in unknown)}"
            )
        specs = _claim_by_name(specs, current)

        previous = {archetype_id: snapshot(archetype) for archetype_id, archetype in current.items()}
        kept_ids = {spec.id for spec in specs if spec.id is not None}
        removed_ids = sorted(set(current) - kept_ids)
        if removed_ids:
            # Products keep their display name; only the link goes away.
            session.execute(
                update(Product)
                .where(Product.model_id.in_(removed_ids))
                .values(model_id=None)
                .execution_options(synchronize_session=False)
            )
            for archetype_id in removed_ids:
                session.delete(current[archetype_id])

        # Park renamed archetypes on placeholder names so swapped names do
        # not trip the unique constraint half-way through the flush.
        for spec in specs:
            if spec.id is not None and current[spec.id].name != spec.name:
                current[spec.id].name = f"__renaming__{spec.id}"
        session.flush()

        created: list[tuple[ModelArchetype, ArchetypeSpec]] = []
        for position, spec in enumerate(specs):
            if spec.id is None:
                archetype = ModelArchetype()
                session.add(archetype)
                created.append((archetype, spec))
            else:
                archetype = current[spec.id]
            _apply_spec(archetype, spec, position)
        session.flush()

        steps: list[dict[str, Any]] = []
        for spec in specs:
            if spec.id is not None:
                steps.extend(plan_propagation(previous[spec.id], spec, spec.id))
        for archetype, spec in created:
            steps.extend(plan_propagation(None, spec, archetype.id))

        job_id = None
        if steps:
            job = CatalogPropagationJob(steps=steps, status=PropagationStatus.PENDING)
            session.add(job)
            session.flush()
            job_id = job.id

        catalog = [serialize_archetype(archetype) for archetype in _ordered_catalog(session)]

    logger.info(
        "Catalog replaced with %s model(s); %s removed; %s propagation step(s) queued%s",
        len(specs),
        len(removed_ids),
        len(steps),
        f" as job {job_id}" if job_id is not None else "",
    )

    propagation: dict[str, Any] | None = None
    if job_id is not None:
        status = PropagationStatus.PENDING
        if propagate:
            status = PropagationStatus.DONE if run_job(job_id) else PropagationStatus.FAILED
        propagation = {"job_id": job_id, "status": status, "steps": len(steps)}

    return {"catalog": catalog, "job_id": job_id, "propagation": propagation}
