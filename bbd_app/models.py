import datetime
import json

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from bbd_app import db
from bbd_app.constants import ROLE_ADMIN


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def iso(value):
    if value is None:
        return None
    return value.isoformat()


def money(value):
    if value is None:
        return None
    return float(value)


def _load_json(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return None


role_permission = db.Table(
    "role_permission",
    db.Column("role_id", db.Integer, db.ForeignKey("role.id"), primary_key=True),
    db.Column("permission_id", db.Integer, db.ForeignKey("permission.id"), primary_key=True),
)


class Permission(db.Model):
    __tablename__ = "permission"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    category = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
        }


class Role(db.Model):
    __tablename__ = "role"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), unique=True, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    is_system = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    permissions = db.relationship(
        "Permission",
        secondary=role_permission,
        lazy="selectin",
        order_by="Permission.name",
    )
    users = db.relationship("User", back_populates="role")

    def to_dict(self, include_permissions=True):
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "isSystem": bool(self.is_system),
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }
        if include_permissions:
            data["permissions"] = [perm.to_dict() for perm in self.permissions]
        return data


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    avatar = db.Column(db.String(255), nullable=True)
    office = db.Column(db.String(80), nullable=True)
    department = db.Column(db.String(80), nullable=True)
    active = db.Column(db.Boolean, default=True, nullable=False)
    must_change_password = db.Column(db.Boolean, default=False, nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("role.id"), nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    role = db.relationship("Role", back_populates="users", lazy="joined")
    password_history = db.relationship(
        "PasswordHistory",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="PasswordHistory.created_at.desc()",
    )

    # Set on the effective user while an admin is viewing the app as someone else.
    original_user = None

    @property
    def is_active(self):
        return bool(self.active)

    @property
    def full_name(self):
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def role_name(self):
        return self.role.name if self.role else None

    @property
    def is_admin(self):
        return self.role_name == ROLE_ADMIN

    @property
    def permission_names(self):
        if not self.role:
            return []
        return [perm.name for perm in self.role.permissions]

    @property
    def is_transient(self):
        return False

    def set_password(self, raw_password):
        self.password_hash = generate_password_hash(raw_password)

    def verify_password(self, raw_password):
        if not raw_password or not self.password_hash:
            return False
        return check_password_hash(self.password_hash, raw_password)

    def to_dict(self, include_permissions=False):
        data = {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
            "avatar": self.avatar,
            "office": self.office,
            "department": self.department,
            "isActive": bool(self.active),
            "mustChangePassword": bool(self.must_change_password),
            "roleId": self.role_id,
            "role": {"id": self.role.id, "name": self.role.name} if self.role else None,
            "lastLoginAt": iso(self.last_login_at),
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }
        if include_permissions and self.role:
            data["role"]["permissions"] = [perm.to_dict() for perm in self.role.permissions]
        return data


class PasswordHistory(db.Model):
    __tablename__ = "password_history"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("User", back_populates="password_history")


class PasswordResetToken(db.Model):
    __tablename__ = "password_reset_token"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    token = db.Column(db.String(64), unique=True, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("User")

    @property
    def is_expired(self):
        return self.expires_at < utcnow()


class OrderStage(db.Model):
    __tablename__ = "order_stage"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    color = db.Column(db.String(20), nullable=True)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    is_final = db.Column(db.Boolean, default=False, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "sortOrder": self.sort_order,
            "color": self.color,
            "isDefault": bool(self.is_default),
            "isFinal": bool(self.is_final),
        }


class Order(db.Model):
    __tablename__ = "order"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(50), unique=True, nullable=False)

    customer_name = db.Column(db.String(200), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)

    building_type = db.Column(db.String(100), nullable=True)
    building_size = db.Column(db.String(50), nullable=True)
    building_width = db.Column(db.String(20), nullable=True)
    building_length = db.Column(db.String(20), nullable=True)
    building_height = db.Column(db.String(20), nullable=True)
    building_color = db.Column(db.String(100), nullable=True)
    foundation_type = db.Column(db.String(100), nullable=True)
    installer = db.Column(db.String(150), nullable=True)

    delivery_address = db.Column(db.String(255), nullable=True)
    delivery_city = db.Column(db.String(100), nullable=True)
    delivery_state = db.Column(db.String(50), nullable=True)
    delivery_zip = db.Column(db.String(20), nullable=True)
    delivery_notes = db.Column(db.Text, nullable=True)

    total_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    deposit_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    deposit_percentage = db.Column(db.Numeric(5, 2), nullable=True)

    deposit_collected = db.Column(db.Boolean, default=False, nullable=False)
    deposit_date = db.Column(db.DateTime, nullable=True)
    deposit_charge_status = db.Column(db.String(50), nullable=True)
    deposit_notes = db.Column(db.Text, nullable=True)
    sent_to_customer = db.Column(db.Boolean, default=False, nullable=False)
    sent_to_customer_date = db.Column(db.DateTime, nullable=True)
    customer_signed = db.Column(db.Boolean, default=False, nullable=False)
    customer_signed_date = db.Column(db.DateTime, nullable=True)
    sent_to_manufacturer = db.Column(db.Boolean, default=False, nullable=False)
    sent_to_manufacturer_date = db.Column(db.DateTime, nullable=True)

    wc_status = db.Column(db.String(50), nullable=True)
    wc_status_date = db.Column(db.DateTime, nullable=True)
    lpp_status = db.Column(db.String(50), nullable=True)
    lpp_status_date = db.Column(db.DateTime, nullable=True)

    status = db.Column(db.String(20), default="ACTIVE", nullable=False)
    priority = db.Column(db.String(20), default="NORMAL", nullable=False)
    current_stage_id = db.Column(db.Integer, db.ForeignKey("order_stage.id"), nullable=True)
    sales_rep_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)

    date_sold = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    special_notes = db.Column(db.Text, nullable=True)
    payment_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    current_stage = db.relationship("OrderStage")
    sales_rep = db.relationship("User", foreign_keys=[sales_rep_id])
    customer = db.relationship("User", foreign_keys=[customer_id])
    files = db.relationship(
        "OrderFile", back_populates="order", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "orderNumber": self.order_number,
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "customerPhone": self.customer_phone,
            "buildingType": self.building_type,
            "buildingSize": self.building_size,
            "buildingWidth": self.building_width,
            "buildingLength": self.building_length,
            "buildingHeight": self.building_height,
            "buildingColor": self.building_color,
            "foundationType": self.foundation_type,
            "installer": self.installer,
            "deliveryAddress": self.delivery_address,
            "deliveryCity": self.delivery_city,
            "deliveryState": self.delivery_state,
            "deliveryZip": self.delivery_zip,
            "deliveryNotes": self.delivery_notes,
            "totalPrice": money(self.total_price),
            "depositAmount": money(self.deposit_amount),
            "depositPercentage": money(self.deposit_percentage),
            "depositCollected": bool(self.deposit_collected),
            "depositDate": iso(self.deposit_date),
            "depositChargeStatus": self.deposit_charge_status,
            "depositNotes": self.deposit_notes,
            "sentToCustomer": bool(self.sent_to_customer),
            "sentToCustomerDate": iso(self.sent_to_customer_date),
            "customerSigned": bool(self.customer_signed),
            "customerSignedDate": iso(self.customer_signed_date),
            "sentToManufacturer": bool(self.sent_to_manufacturer),
            "sentToManufacturerDate": iso(self.sent_to_manufacturer_date),
            "wcStatus": self.wc_status,
            "wcStatusDate": iso(self.wc_status_date),
            "lppStatus": self.lpp_status,
            "lppStatusDate": iso(self.lpp_status_date),
            "status": self.status,
            "priority": self.priority,
            "currentStage": self.current_stage.to_dict() if self.current_stage else None,
            "salesRep": _user_brief(self.sales_rep),
            "customerId": self.customer_id,
            "dateSold": iso(self.date_sold),
            "cancelledAt": iso(self.cancelled_at),
            "cancelReason": self.cancel_reason,
            "completedAt": iso(self.completed_at),
            "specialNotes": self.special_notes,
            "paymentNotes": self.payment_notes,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }


def _user_brief(user):
    if user is None:
        return None
    return {
        "id": user.id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
    }


class OrderStageHistory(db.Model):
    __tablename__ = "order_stage_history"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False)
    stage_id = db.Column(db.Integer, db.ForeignKey("order_stage.id"), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    changed_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    stage = db.relationship("OrderStage")


class OrderActivity(db.Model):
    __tablename__ = "order_activity"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False)
    type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    meta = db.Column("metadata", db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "orderId": self.order_id,
            "type": self.type,
            "description": self.description,
            "user": _user_brief(self.user),
            "metadata": _load_json(self.meta),
            "createdAt": iso(self.created_at),
        }


class File(db.Model):
    __tablename__ = "file"

    id = db.Column(db.Integer, primary_key=True)
    filename = db.Column(db.String(255), nullable=False)
    storage_key = db.Column(db.String(255), unique=True, nullable=False)
    mime_type = db.Column(db.String(120), nullable=False)
    size = db.Column(db.Integer, nullable=False, default=0)
    category = db.Column(db.String(20), default="OTHER", nullable=False)
    description = db.Column(db.Text, nullable=True)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    uploaded_by = db.relationship("User")
    order_links = db.relationship(
        "OrderFile", back_populates="file", cascade="all, delete-orphan"
    )
    ticket_links = db.relationship(
        "TicketFile", back_populates="file", cascade="all, delete-orphan"
    )

    @property
    def is_pdf(self):
        return self.mime_type == "application/pdf" or self.filename.lower().endswith(".pdf")

    def to_dict(self):
        return {
            "id": self.id,
            "filename": self.filename,
            "storageKey": self.storage_key,
            "mimeType": self.mime_type,
            "size": self.size,
            "category": self.category,
            "description": self.description,
            "uploadedBy": _user_brief(self.uploaded_by),
            "createdAt": iso(self.created_at),
        }


class OrderFile(db.Model):
    __tablename__ = "order_file"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False)
    file_id = db.Column(db.Integer, db.ForeignKey("file.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    order = db.relationship("Order", back_populates="files")
    file = db.relationship("File", back_populates="order_links")


class TicketFile(db.Model):
    __tablename__ = "ticket_file"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("ticket.id"), nullable=False)
    file_id = db.Column(db.Integer, db.ForeignKey("file.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    ticket = db.relationship("Ticket", back_populates="files")
    file = db.relationship("File", back_populates="ticket_links")


class Document(db.Model):
    __tablename__ = "document"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), default="DRAFT", nullable=False)
    file_id = db.Column(db.Integer, db.ForeignKey("file.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False)
    signing_token = db.Column(db.String(64), unique=True, nullable=True)
    sent_at = db.Column(db.DateTime, nullable=True)
    viewed_at = db.Column(db.DateTime, nullable=True)
    signed_at = db.Column(db.DateTime, nullable=True)
    signed_file_id = db.Column(db.Integer, db.ForeignKey("file.id"), nullable=True)
    signed_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    signer_ip = db.Column(db.String(100), nullable=True)
    signer_user_agent = db.Column(db.String(500), nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    file = db.relationship("File", foreign_keys=[file_id])
    signed_file = db.relationship("File", foreign_keys=[signed_file_id])
    order = db.relationship("Order")
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "file": self.file.to_dict() if self.file else None,
            "signedFile": self.signed_file.to_dict() if self.signed_file else None,
            "orderId": self.order_id,
            "orderNumber": self.order.order_number if self.order else None,
            "sentAt": iso(self.sent_at),
            "viewedAt": iso(self.viewed_at),
            "signedAt": iso(self.signed_at),
            "signerIp": self.signer_ip,
            "createdBy": _user_brief(self.created_by),
            "createdAt": iso(self.created_at),
        }


class Email(db.Model):
    __tablename__ = "email"

    id = db.Column(db.Integer, primary_key=True)
    subject = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=False)
    to_address = db.Column(db.String(255), nullable=False)
    from_address = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), default="PENDING", nullable=False)
    fail_reason = db.Column(db.Text, nullable=True)
    external_id = db.Column(db.String(255), nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=True)
    sent_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    sent_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)


class Message(db.Model):
    __tablename__ = "message"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False)
    sender_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    is_internal = db.Column(db.Boolean, default=False, nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey("message.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    sender = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "orderId": self.order_id,
            "content": self.content,
            "isInternal": bool(self.is_internal),
            "parentId": self.parent_id,
            "sender": _user_brief(self.sender),
            "createdAt": iso(self.created_at),
        }


class Ticket(db.Model):
    __tablename__ = "ticket"

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(20), unique=True, nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False)
    type = db.Column(db.String(30), default="OTHER", nullable=False)
    status = db.Column(db.String(20), default="OPEN", nullable=False)
    priority = db.Column(db.String(20), default="NORMAL", nullable=False)
    subject = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    resolution = db.Column(db.Text, nullable=True)
    assigned_to_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    resolved_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    order = db.relationship("Order")
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    notes = db.relationship(
        "TicketNote",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketNote.created_at.desc()",
    )
    activities = db.relationship(
        "TicketActivity",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketActivity.created_at.desc()",
    )
    files = db.relationship(
        "TicketFile", back_populates="ticket", cascade="all, delete-orphan"
    )

    def to_dict(self, detail=False):
        data = {
            "id": self.id,
            "ticketNumber": self.ticket_number,
            "orderId": self.order_id,
            "order": {
                "id": self.order.id,
                "orderNumber": self.order.order_number,
                "customerName": self.order.customer_name,
            }
            if self.order
            else None,
            "type": self.type,
            "status": self.status,
            "priority": self.priority,
            "subject": self.subject,
            "description": self.description,
            "resolution": self.resolution,
            "assignedTo": _user_brief(self.assigned_to),
            "createdBy": _user_brief(self.created_by),
            "resolvedAt": iso(self.resolved_at),
            "closedAt": iso(self.closed_at),
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }
        if detail:
            data["notes"] = [note.to_dict() for note in self.notes]
            data["activities"] = [activity.to_dict() for activity in self.activities]
            data["files"] = [link.file.to_dict() for link in self.files]
        return data


class TicketNote(db.Model):
    __tablename__ = "ticket_note"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("ticket.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    is_internal = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    ticket = db.relationship("Ticket", back_populates="notes")
    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "content": self.content,
            "isInternal": bool(self.is_internal),
            "user": _user_brief(self.user),
            "createdAt": iso(self.created_at),
        }


class TicketActivity(db.Model):
    __tablename__ = "ticket_activity"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("ticket.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    action = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=False)
    meta = db.Column("metadata", db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    ticket = db.relationship("Ticket", back_populates="activities")
    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "action": self.action,
            "description": self.description,
            "metadata": _load_json(self.meta),
            "user": _user_brief(self.user),
            "createdAt": iso(self.created_at),
        }


class Revision(db.Model):
    __tablename__ = "revision"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False)
    revision_number = db.Column(db.String(30), nullable=False)
    revision_date = db.Column(db.DateTime, nullable=False)
    change_description = db.Column(db.Text, nullable=True)
    change_in_price = db.Column(db.String(100), nullable=True)
    old_order_total = db.Column(db.Numeric(12, 2), nullable=True)
    new_order_total = db.Column(db.Numeric(12, 2), nullable=True)
    order_total_diff = db.Column(db.Numeric(12, 2), nullable=True)
    changing_manufacturer = db.Column(db.Boolean, default=False, nullable=False)
    original_manufacturer = db.Column(db.String(150), nullable=True)
    new_manufacturer = db.Column(db.String(150), nullable=True)
    revision_fee = db.Column(db.Numeric(12, 2), nullable=True)
    payment_method = db.Column(db.String(50), nullable=True)
    sales_rep_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    order = db.relationship("Order")
    sales_rep = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "orderId": self.order_id,
            "revisionNumber": self.revision_number,
            "revisionDate": iso(self.revision_date),
            "changeDescription": self.change_description,
            "changeInPrice": self.change_in_price,
            "oldOrderTotal": money(self.old_order_total),
            "newOrderTotal": money(self.new_order_total),
            "orderTotalDiff": money(self.order_total_diff),
            "changingManufacturer": bool(self.changing_manufacturer),
            "originalManufacturer": self.original_manufacturer,
            "newManufacturer": self.new_manufacturer,
            "revisionFee": money(self.revision_fee),
            "paymentMethod": self.payment_method,
            "salesRep": _user_brief(self.sales_rep),
            "createdAt": iso(self.created_at),
        }


class OrderChange(db.Model):
    __tablename__ = "order_change"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False)
    change_date = db.Column(db.DateTime, nullable=False)
    old_order_total = db.Column(db.Numeric(12, 2), nullable=True)
    new_order_total = db.Column(db.Numeric(12, 2), nullable=True)
    old_deposit_total = db.Column(db.Numeric(12, 2), nullable=True)
    new_deposit_total = db.Column(db.Numeric(12, 2), nullable=True)
    order_total_diff = db.Column(db.Numeric(12, 2), nullable=True)
    deposit_diff = db.Column(db.Numeric(12, 2), nullable=True)
    order_form_name = db.Column(db.String(255), nullable=True)
    manufacturer = db.Column(db.String(150), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    change_type = db.Column(db.String(100), nullable=True)
    additional_notes = db.Column(db.Text, nullable=True)
    uploads_url = db.Column(db.String(500), nullable=True)
    deposit_charged = db.Column(db.String(100), nullable=True)
    sabrina_process = db.Column(db.Boolean, default=False, nullable=False)
    updated_in_new_sale = db.Column(db.Boolean, default=False, nullable=False)
    rex_process = db.Column(db.String(100), nullable=True)
    sales_rep_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    new_sales_ref = db.Column(db.String(255), nullable=True)
    revisions_ref = db.Column(db.String(255), nullable=True)
    cancellations_ref = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    order = db.relationship("Order")
    sales_rep = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "orderId": self.order_id,
            "order": {
                "id": self.order.id,
                "orderNumber": self.order.order_number,
                "customerName": self.order.customer_name,
            }
            if self.order
            else None,
            "changeDate": iso(self.change_date),
            "oldOrderTotal": money(self.old_order_total),
            "newOrderTotal": money(self.new_order_total),
            "oldDepositTotal": money(self.old_deposit_total),
            "newDepositTotal": money(self.new_deposit_total),
            "orderTotalDiff": money(self.order_total_diff),
            "depositDiff": money(self.deposit_diff),
            "orderFormName": self.order_form_name,
            "manufacturer": self.manufacturer,
            "customerEmail": self.customer_email,
            "changeType": self.change_type,
            "additionalNotes": self.additional_notes,
            "uploadsUrl": self.uploads_url,
            "depositCharged": self.deposit_charged,
            "sabrinaProcess": bool(self.sabrina_process),
            "updatedInNewSale": bool(self.updated_in_new_sale),
            "rexProcess": self.rex_process,
            "salesRep": _user_brief(self.sales_rep),
            "newSalesRef": self.new_sales_ref,
            "revisionsRef": self.revisions_ref,
            "cancellationsRef": self.cancellations_ref,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }


class Manufacturer(db.Model):
    __tablename__ = "manufacturer"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "isActive": bool(self.is_active),
            "createdAt": iso(self.created_at),
        }


class PayPlan(db.Model):
    __tablename__ = "pay_plan"
    __table_args__ = (db.UniqueConstraint("sales_rep_id", "month", "year"),)

    id = db.Column(db.Integer, primary_key=True)
    sales_rep_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    salary = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cancellation_deduction = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    sales_rep = db.relationship("User")
    line_items = db.relationship(
        "PayPlanLineItem",
        back_populates="pay_plan",
        cascade="all, delete-orphan",
        order_by="PayPlanLineItem.sort_order",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "salesRepId": self.sales_rep_id,
            "month": self.month,
            "year": self.year,
            "salary": money(self.salary),
            "cancellationDeduction": money(self.cancellation_deduction),
            "lineItems": [item.to_dict() for item in self.line_items],
        }


class PayPlanLineItem(db.Model):
    __tablename__ = "pay_plan_line_item"

    id = db.Column(db.Integer, primary_key=True)
    pay_plan_id = db.Column(db.Integer, db.ForeignKey("pay_plan.id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    sort_order = db.Column(db.Integer, default=0, nullable=False)

    pay_plan = db.relationship("PayPlan", back_populates="line_items")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "amount": money(self.amount),
            "sortOrder": self.sort_order,
        }


class OfficePayPlan(db.Model):
    __tablename__ = "office_pay_plan"
    __table_args__ = (db.UniqueConstraint("office", "month", "year"),)

    id = db.Column(db.Integer, primary_key=True)
    office = db.Column(db.String(80), nullable=False)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    tiers = db.relationship(
        "OfficePayPlanTier",
        back_populates="office_pay_plan",
        cascade="all, delete-orphan",
        order_by="OfficePayPlanTier.sort_order",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "office": self.office,
            "month": self.month,
            "year": self.year,
            "tiers": [tier.to_dict() for tier in self.tiers],
        }


class OfficePayPlanTier(db.Model):
    __tablename__ = "office_pay_plan_tier"

    id = db.Column(db.Integer, primary_key=True)
    office_pay_plan_id = db.Column(
        db.Integer, db.ForeignKey("office_pay_plan.id"), nullable=False
    )
    tier_type = db.Column(db.String(30), nullable=False)
    min_value = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    max_value = db.Column(db.Numeric(14, 2), nullable=True)
    bonus_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    bonus_type = db.Column(db.String(20), default="FLAT", nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)

    office_pay_plan = db.relationship("OfficePayPlan", back_populates="tiers")

    def to_dict(self):
        return {
            "id": self.id,
            "tierType": self.tier_type,
            "minValue": money(self.min_value),
            "maxValue": money(self.max_value),
            "bonusAmount": money(self.bonus_amount),
            "bonusType": self.bonus_type,
            "sortOrder": self.sort_order,
        }


class PayLedger(db.Model):
    __tablename__ = "pay_ledger"
    __table_args__ = (db.UniqueConstraint("month", "year", "sales_rep_id"),)

    id = db.Column(db.Integer, primary_key=True)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    sales_rep_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    buildings_sold = db.Column(db.Integer, default=0, nullable=False)
    total_order_amount = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    monthly_salary = db.Column(db.Numeric(12, 2), default=0, nullable=False)
    tier_bonus = db.Column(db.Numeric(12, 2), default=0, nullable=False)
    commission_amount = db.Column(db.Numeric(12, 2), default=0, nullable=False)
    plan_total = db.Column(db.Numeric(12, 2), default=0, nullable=False)
    cancellation_deduction = db.Column(db.Numeric(12, 2), default=0, nullable=False)
    adjustment = db.Column(db.Numeric(12, 2), default=0, nullable=False)
    adjustment_note = db.Column(db.Text, nullable=True)
    final_amount = db.Column(db.Numeric(12, 2), default=0, nullable=False)
    status = db.Column(db.String(20), default="PENDING", nullable=False)
    notes = db.Column(db.Text, nullable=True)
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    sales_rep = db.relationship("User", foreign_keys=[sales_rep_id])
    reviewed_by = db.relationship("User", foreign_keys=[reviewed_by_id])

    def to_dict(self):
        return {
            "id": self.id,
            "month": self.month,
            "year": self.year,
            "salesRepId": self.sales_rep_id,
            "salesRep": _user_brief(self.sales_rep),
            "buildingsSold": self.buildings_sold,
            "totalOrderAmount": money(self.total_order_amount),
            "monthlySalary": money(self.monthly_salary),
            "tierBonus": money(self.tier_bonus),
            "commissionAmount": money(self.commission_amount),
            "planTotal": money(self.plan_total),
            "cancellationDeduction": money(self.cancellation_deduction),
            "adjustment": money(self.adjustment),
            "adjustmentNote": self.adjustment_note,
            "finalAmount": money(self.final_amount),
            "status": self.status,
            "notes": self.notes,
            "reviewedBy": _user_brief(self.reviewed_by),
            "reviewedAt": iso(self.reviewed_at),
            "updatedAt": iso(self.updated_at),
        }


class PayAuditLog(db.Model):
    __tablename__ = "pay_audit_log"

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    sales_rep_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    month = db.Column(db.Integer, nullable=True)
    year = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "description": self.description,
            "user": _user_brief(self.user),
            "salesRepId": self.sales_rep_id,
            "month": self.month,
            "year": self.year,
            "createdAt": iso(self.created_at),
        }
