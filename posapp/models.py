from datetime import datetime

from posapp.extensions import db


class ProductCategory:
    # Unique units (one IMEI per row); a line for one is always quantity 1.
    SERIALIZED = "serialized"
    # Counted stock such as chargers and cases.
    BULK = "bulk"

    ALL_CATEGORIES = [SERIALIZED, BULK]
    LABELS = {
        SERIALIZED: "Smartphones",
        BULK: "Accessories",
    }


class StockStatus:
    ENABLED = "enabled"
    DISABLED = "disabled"

    ALL_STATUSES = [ENABLED, DISABLED]


class OrderStatus:
    PENDING = "pending"
    COMPLETED = "completed"

    # Both states stay editable; the status is a tag, not a lifecycle.
    ALL_STATUSES = [PENDING, COMPLETED]
    LABELS = {
        PENDING: "Pending",
        COMPLETED: "Completed",
    }


class PropagationStatus:
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"

    RUNNABLE_STATES = {PENDING, FAILED}
    ALL_STATUSES = [PENDING, DONE, FAILED]


class ModelArchetype(db.Model):
    __tablename__ = "model_archetype"
    # Ids are handed to clients as stable keys; SQLite must never reuse them.
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    price = db.Column(db.Numeric(10, 2), nullable=True)
    warranty = db.Column(db.Integer, nullable=True)
    storages = db.Column(db.JSON, nullable=False, default=list)
    colors = db.Column(db.JSON, nullable=False, default=list)
    condition = db.Column(db.String(100), nullable=True)
    subcategory = db.Column(db.String(100), nullable=True)
    storage_prices = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    products = db.relationship("Product", back_populates="archetype")

    def __repr__(self):
        return f"<ModelArchetype {self.id} {self.name!r}>"


class Product(db.Model):
    __tablename__ = "product"

    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_product_stock_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(255), unique=True, nullable=True)
    imei = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    stock_status = db.Column(db.String(50), nullable=False, default=StockStatus.ENABLED)
    category = db.Column(db.String(50), nullable=False, default=ProductCategory.BULK)
    subcategory = db.Column(db.String(100), nullable=True)
    # ``model`` is the display name; ``model_id`` is the join used for catalog
    # propagation. Rows imported before archetypes had ids only carry the name.
    model = db.Column(db.String(255), nullable=True, index=True)
    model_id = db.Column(
        db.Integer,
        db.ForeignKey("model_archetype.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    color = db.Column(db.String(50), nullable=True)
    storage = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    archetype = db.relationship("ModelArchetype", back_populates="products")

    @property
    def is_serialized(self) -> bool:
        return self.category == ProductCategory.SERIALIZED

    @property
    def is_enabled(self) -> bool:
        return self.stock_status == StockStatus.ENABLED

    def __repr__(self):
        return f"<Product {self.id} {self.name!r} stock={self.stock_quantity}>"


class ShopManager(db.Model):
    __tablename__ = "shop_manager"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Order(db.Model):
    __tablename__ = "order"

    __table_args__ = (
        db.CheckConstraint("total_amount >= 0", name="ck_order_total_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(50), nullable=False, default=OrderStatus.PENDING)
    guest_name = db.Column(db.String(255), nullable=False)
    guest_phone = db.Column(db.String(50), nullable=False)
    guest_note = db.Column(db.Text, nullable=True)
    guest_embg = db.Column(db.String(50), nullable=True)
    guest_id_card = db.Column(db.String(50), nullable=True)
    shop_manager_id = db.Column(
        db.Integer,
        db.ForeignKey("shop_manager.id", ondelete="RESTRICT"),
        nullable=False,
    )
    total_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    original_total = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_currency = db.Column(db.String(10), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    shop_manager = db.relationship("ShopManager")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def __repr__(self):
        return f"<Order {self.id} status={self.status}>"

    @property
    def status_label(self):
        return OrderStatus.LABELS.get(self.status, (self.status or "").title())


class OrderItem(db.Model):
    __tablename__ = "order_item"

    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer, db.ForeignKey("order.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(
        db.Integer, db.ForeignKey("product.id"), nullable=False, index=True
    )
    quantity = db.Column(db.Integer, nullable=False, default=1)
    # Price captured at allocation; later catalog price pushes never touch it.
    price = db.Column(db.Numeric(10, 2), nullable=False)
    warranty = db.Column(db.Integer, nullable=True)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")


class CatalogPropagationJob(db.Model):
    __tablename__ = "catalog_propagation_job"

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(
        db.String(20), nullable=False, default=PropagationStatus.PENDING, index=True
    )
    steps = db.Column(db.JSON, nullable=False, default=list)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f"<CatalogPropagationJob {self.id} {self.status} steps={len(self.steps or [])}>"
