from flask import Blueprint, request

from bbd_app import db
from bbd_app.auth import require_permission
from bbd_app.errors import ApiError, ok
from bbd_app.models import Manufacturer
from bbd_app.routes import get_or_404, json_body

manufacturers_bp = Blueprint("manufacturers", __name__, url_prefix="/api/manufacturers")


def _name_exists(name, exclude_id=None):
    query = Manufacturer.query.filter(Manufacturer.name == name)
    if exclude_id is not None:
        query = query.filter(Manufacturer.id != exclude_id)
    return query.first() is not None


@manufacturers_bp.route("", methods=["GET"])
def list_manufacturers():
    query = Manufacturer.query
    if request.args.get("active") == "true":
        query = query.filter(Manufacturer.is_active.is_(True))
    return ok([item.to_dict() for item in query.order_by(Manufacturer.name.asc()).all()])


@manufacturers_bp.route("", methods=["POST"])
def create_manufacturer():
    require_permission("settings.edit")
    name = (json_body().get("name") or "").strip()
    if not name:
        raise ApiError("Manufacturer name is required")
    if _name_exists(name):
        raise ApiError("Manufacturer name already exists")
    manufacturer = Manufacturer(name=name)
    db.session.add(manufacturer)
    db.session.commit()
    return ok(manufacturer.to_dict(), 201)


@manufacturers_bp.route("/<int:manufacturer_id>", methods=["PATCH"])
def update_manufacturer(manufacturer_id):
    require_permission("settings.edit")
    manufacturer = get_or_404(Manufacturer, manufacturer_id, "Manufacturer not found")
    data = json_body()
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ApiError("Manufacturer name is required")
        if _name_exists(name, exclude_id=manufacturer.id):
            raise ApiError("Manufacturer name already exists")
        manufacturer.name = name
    if "isActive" in data:
        if not isinstance(data["isActive"], bool):
            raise ApiError("isActive must be true or false")
        manufacturer.is_active = data["isActive"]
    db.session.commit()
    return ok(manufacturer.to_dict())


@manufacturers_bp.route("/<int:manufacturer_id>", methods=["DELETE"])
def delete_manufacturer(manufacturer_id):
    require_permission("settings.edit")
    manufacturer = get_or_404(Manufacturer, manufacturer_id, "Manufacturer not found")
    db.session.delete(manufacturer)
    db.session.commit()
    return ok({"id": manufacturer_id})
