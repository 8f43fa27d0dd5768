import os
import sys
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from posapp import create_app
from posapp.errors import CatalogPropagationError, ValidationError
from posapp.extensions import db
from posapp.models import (
    CatalogPropagationJob,
    ModelArchetype,
    Order,
    OrderItem,
    Product,
    ProductCategory,
    PropagationStatus,
    ShopManager,
)
from posapp.services import catalog as catalog_service
from posapp.services.catalog import ArchetypeSpec, plan_propagation


@pytest.fixture
def app():
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def galaxy(app):
    archetype = ModelArchetype(
        name="Galaxy S24",
        price=Decimal("40000"),
        warranty=24,
        storages=["128", "256"],
        colors=["Black", "Blue"],
        storage_prices={},
    )
    db.session.add(archetype)
    db.session.commit()
    return archetype.id


def _phone(name, *, model="Galaxy S24", model_id=None, storage="128", color="Black", price="40000"):
    product = Product(
        name=name,
        price=Decimal(price),
        stock_quantity=1,
        category=ProductCategory.SERIALIZED,
        model=model,
        model_id=model_id,
        storage=storage,
        color=color,
    )
    db.session.add(product)
    db.session.commit()
    return product.id


def _product(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id)


def _entry(archetype_id, **overrides):
    entry = {
        "id": archetype_id,
        "name": "Galaxy S24",
        "price": 40000,
        "warranty": 24,
        "storages": ["128", "256"],
        "colors": ["Black", "Blue"],
        "storage_prices": {},
    }
    entry.update(overrides)
    return entry


def test_price_change_reaches_products_but_not_order_snapshots(app, galaxy):
    linked = _phone("S24 linked", model_id=galaxy)
    legacy = _phone("S24 legacy")
    other = _phone("Pixel 8", model="Pixel 8", price="35000")

    manager = ShopManager(name="Ana")
    db.session.add(manager)
    db.session.flush()
    order = Order(
        guest_name="Marko",
        guest_phone="071111111",
        shop_manager_id=manager.id,
        total_amount=Decimal("40000"),
        original_total=Decimal("40000"),
    )
    order.items.append(OrderItem(product_id=linked, quantity=1, price=Decimal("40000")))
    db.session.add(order)
    db.session.commit()

    result = catalog_service.replace_catalog([_entry(galaxy, price=42000)])

    assert result["propagation"]["status"] == PropagationStatus.DONE
    assert result["job_id"] == result["propagation"]["job_id"]
    assert result["catalog"][0]["price"] == Decimal("42000.00")
    assert _product(linked).price == Decimal("42000.00")
    assert _product(legacy).price == Decimal("42000.00")
    assert _product(other).price == Decimal("35000.00")
    assert OrderItem.query.one().price == Decimal("40000.00")


def test_rename_follows_stable_id(app, galaxy):
    linked = _phone("S24 linked", model_id=galaxy)
    legacy = _phone("S24 legacy")

    catalog_service.replace_catalog([_entry(galaxy, name="Galaxy S24 FE")])

    for product_id in (linked, legacy):
        product = _product(product_id)
        assert product.model == "Galaxy S24 FE"
        assert product.model_id == galaxy
    assert db.session.get(ModelArchetype, galaxy).name == "Galaxy S24 FE"


def test_swapping_names_between_models(app, galaxy):
    pixel = ModelArchetype(name="Pixel 8", price=Decimal("35000"))
    db.session.add(pixel)
    db.session.commit()
    pixel_id = pixel.id
    galaxy_phone = _phone("S24", model_id=galaxy)
    pixel_phone = _phone("P8", model="Pixel 8", model_id=pixel_id, price="35000")

    catalog_service.replace_catalog(
        [
            _entry(galaxy, name="Pixel 8"),
            {"id": pixel_id, "name": "Galaxy S24", "price": 35000},
        ]
    )

    assert _product(galaxy_phone).model == "Pixel 8"
    assert _product(pixel_phone).model == "Galaxy S24"


def test_storage_and_color_renames_and_removals(app, galaxy):
    small_black = _phone("S24 128 Black", model_id=galaxy, storage="128", color="Black")
    large_blue = _phone("S24 256 Blue", model_id=galaxy, storage="256", color="Blue")

    catalog_service.replace_catalog(
        [_entry(galaxy, storages=["128GB", "256"], colors=["Black"])]
    )

    first = _product(small_black)
    second = _product(large_blue)
    assert first.storage == "128GB"
    assert first.color == "Black"
    assert second.storage == "256"
    assert second.color is None


def test_reordering_values_is_not_a_rename(app, galaxy):
    blue = _phone("S24 Blue", model_id=galaxy, color="Blue")

    result = catalog_service.replace_catalog([_entry(galaxy, colors=["Blue", "Black"])])

    assert result["job_id"] is None
    assert _product(blue).color == "Blue"


def test_storage_override_only_touches_that_storage(app, galaxy):
    small = _phone("S24 128", model_id=galaxy, storage="128")
    large = _phone("S24 256", model_id=galaxy, storage="256")

    catalog_service.replace_catalog([_entry(galaxy, storage_prices={"256": 45000})])

    assert _product(small).price == Decimal("40000.00")
    assert _product(large).price == Decimal("45000.00")

    catalog_service.replace_catalog(
        [_entry(galaxy, price=41000, storage_prices={"256": 45000})]
    )

    assert _product(small).price == Decimal("41000.00")
    assert _product(large).price == Decimal("45000.00")


def test_removed_model_unlinks_products(app, galaxy):
    linked = _phone("S24", model_id=galaxy)

    result = catalog_service.replace_catalog([{"name": "iPhone 15", "price": 60000}])

    assert [entry["name"] for entry in result["catalog"]] == ["iPhone 15"]
    assert result["catalog"][0]["id"] != galaxy
    assert db.session.get(ModelArchetype, galaxy) is None
    product = _product(linked)
    assert product.model_id is None
    assert product.model == "Galaxy S24"


def test_new_model_links_matching_products(app):
    legacy = _phone("Pixel 8", model="Pixel 8", price="35000")

    result = catalog_service.replace_catalog([{"name": "Pixel 8", "price": 35000}])

    new_id = result["catalog"][0]["id"]
    assert _product(legacy).model_id == new_id


def test_catalog_order_is_preserved(app):
    catalog_service.replace_catalog(
        [{"name": "Zeta"}, {"name": "Alpha"}, {"name": "Mid"}]
    )

    assert [entry["name"] for entry in catalog_service.get_catalog()] == ["Zeta", "Alpha", "Mid"]


@pytest.mark.parametrize(
    "payload",
    [
        "not a list",
        [{"price": 100}],
        [{"name": "A"}, {"name": "a"}],
        [{"name": "A", "storages": "128"}],
        [{"name": "A", "colors": [1, 2]}],
        [{"name": "A", "price": -1}],
        [{"name": "A", "storage_prices": {"128": "cheap"}}],
        [{"name": "A", "warranty": 99}],
        [{"name": "A", "condition": 5}],
        [{"id": 777, "name": "A"}],
    ],
)
def test_invalid_catalog_is_rejected(app, galaxy, payload):
    with pytest.raises(ValidationError):
        catalog_service.replace_catalog(payload)

    assert [entry["name"] for entry in catalog_service.get_catalog()] == ["Galaxy S24"]


def test_failed_propagation_keeps_catalog_and_can_resume(app, galaxy, monkeypatch):
    linked = _phone("S24", model_id=galaxy)

    def _explode(session, job_id, steps):
        raise CatalogPropagationError(job_id, "database went away")

    monkeypatch.setattr(catalog_service, "apply_steps", _explode)
    result = catalog_service.replace_catalog([_entry(galaxy, price=42000)])

    assert result["propagation"]["status"] == PropagationStatus.FAILED
    assert db.session.get(ModelArchetype, galaxy).price == Decimal("42000.00")
    assert _product(linked).price == Decimal("40000.00")
    job = db.session.get(CatalogPropagationJob, result["job_id"])
    assert job.status == PropagationStatus.FAILED
    assert job.attempts == 1
    assert "database went away" in job.last_error

    monkeypatch.undo()
    summary = catalog_service.run_pending_propagations()

    assert summary["succeeded"] == [result["job_id"]]
    assert summary["failed"] == []
    assert _product(linked).price == Decimal("42000.00")
    db.session.expire_all()
    job = db.session.get(CatalogPropagationJob, result["job_id"])
    assert job.status == PropagationStatus.DONE
    assert job.attempts == 2
    assert job.completed_at is not None


def test_deferred_propagation_waits_for_the_runner(app, galaxy):
    app.config["CATALOG_PROPAGATE_ON_REPLACE"] = False
    linked = _phone("S24", model_id=galaxy)

    result = catalog_service.replace_catalog([_entry(galaxy, price=43000)])

    assert result["propagation"]["status"] == PropagationStatus.PENDING
    assert _product(linked).price == Decimal("40000.00")

    catalog_service.run_pending_propagations(limit=1)

    assert _product(linked).price == Decimal("43000.00")


def test_jobs_past_the_attempt_limit_are_skipped(app):
    job = CatalogPropagationJob(steps=[], status=PropagationStatus.FAILED, attempts=5)
    db.session.add(job)
    db.session.commit()
    app.config["CATALOG_PROPAGATION_MAX_ATTEMPTS"] = 5

    assert catalog_service.run_pending_propagations()["processed"] == 0


def test_plan_for_unchanged_model_is_empty():
    spec = ArchetypeSpec(
        id=1,
        name="Galaxy S24",
        price=Decimal("40000.00"),
        storages=("128",),
        colors=("Black",),
    )

    assert plan_propagation(spec, spec, 1) == []


def test_case_only_value_edit_is_not_propagated():
    before = ArchetypeSpec(id=1, name="Galaxy S24", colors=("Black",))
    after = ArchetypeSpec(id=1, name="Galaxy S24", colors=("black",))

    assert plan_propagation(before, after, 1) == []


def test_entry_without_id_edits_the_model_of_that_name(app, galaxy):
    linked = _phone("S24 linked", model_id=galaxy)
    legacy = _phone("S24 legacy")

    result = catalog_service.replace_catalog(
        [_entry(None, name="galaxy s24", price=42000)]
    )

    assert result["catalog"][0]["id"] == galaxy
    assert result["propagation"]["status"] == PropagationStatus.DONE
    assert _product(linked).price == Decimal("42000.00")
    assert _product(legacy).price == Decimal("42000.00")
    assert ModelArchetype.query.count() == 1


def test_deleted_model_id_is_never_handed_out_again(app, galaxy):
    catalog_service.replace_catalog([{"name": "Pixel 8"}])
    new_id = catalog_service.get_catalog()[0]["id"]

    assert new_id != galaxy
    with pytest.raises(ValidationError):
        catalog_service.replace_catalog([_entry(galaxy, price=1)])


def test_accessories_naming_a_model_are_left_alone(app, galaxy):
    phone = _phone("S24", model_id=galaxy)
    case = Product(
        name="Galaxy S24 case",
        price=Decimal("500"),
        stock_quantity=10,
        category=ProductCategory.BULK,
        model="Galaxy S24",
        model_id=galaxy,
        storage="128",
        color="Blue",
    )
    loose_case = Product(
        name="Galaxy S24 clear case",
        price=Decimal("300"),
        stock_quantity=10,
        category=ProductCategory.BULK,
        model="Galaxy S24",
    )
    db.session.add_all([case, loose_case])
    db.session.commit()
    case_id, loose_id = case.id, loose_case.id

    catalog_service.replace_catalog(
        [_entry(galaxy, name="Galaxy S24 FE", price=42000, storages=["128GB", "256"], colors=["Black"])]
    )

    assert _product(phone).price == Decimal("42000.00")
    accessory = _product(case_id)
    assert accessory.price == Decimal("500.00")
    assert accessory.model == "Galaxy S24"
    assert accessory.storage == "128"
    assert accessory.color == "Blue"
    loose = _product(loose_id)
    assert loose.price == Decimal("300.00")
    assert loose.model_id is None


def test_database_error_in_job_is_recorded_not_raised(app, galaxy, monkeypatch):
    linked = _phone("S24", model_id=galaxy)

    def _lost_connection(session, job_id, steps):
        raise OperationalError("UPDATE product", {}, Exception("database is locked"))

    monkeypatch.setattr(catalog_service, "apply_steps", _lost_connection)
    result = catalog_service.replace_catalog([_entry(galaxy, price=42000)])

    assert result["propagation"]["status"] == PropagationStatus.FAILED
    assert db.session.get(ModelArchetype, galaxy).price == Decimal("42000.00")
    job = db.session.get(CatalogPropagationJob, result["job_id"])
    assert job.status == PropagationStatus.FAILED
    assert job.attempts == 1
    assert "database is locked" in job.last_error

    monkeypatch.undo()
    assert catalog_service.run_pending_propagations()["succeeded"] == [result["job_id"]]
    assert _product(linked).price == Decimal("42000.00")
