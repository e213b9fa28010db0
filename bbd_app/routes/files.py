import mimetypes
from io import BytesIO

from flask import Blueprint, current_app, request, send_file
from werkzeug.utils import secure_filename

from bbd_app import db
from bbd_app.auth import require_auth, require_permission
from bbd_app.common_import_utils import parse_int_field
from bbd_app.constants import FILE_CATEGORIES, MAX_FILE_SIZE
from bbd_app.errors import ApiError, NotFound, ok
from bbd_app.models import File, Order, OrderFile, Ticket, TicketFile
from bbd_app.routes import get_or_404
from bbd_app.storage import LocalStorage, StorageError, generate_storage_key, get_storage
from utils.activity import log_order_activity, log_ticket_activity

files_bp = Blueprint("files", __name__, url_prefix="/api/files")


def _read_upload(upload):
    data = upload.read()
    if len(data) > MAX_FILE_SIZE:
        raise ApiError("File size must be less than 10MB")
    return data


def store_upload(upload, user, category="OTHER", description=None):
    """Persist an uploaded file to storage and create its ``File`` row."""
    data = _read_upload(upload)
    filename = secure_filename(upload.filename) or "file"
    mime_type = (
        upload.mimetype
        or mimetypes.guess_type(filename)[0]
        or "application/octet-stream"
    )
    key = generate_storage_key(filename)
    get_storage().upload(key, data, mime_type, filename)

    record = File(
        filename=filename,
        storage_key=key,
        mime_type=mime_type,
        size=len(data),
        category=category,
        description=description,
        uploaded_by_id=user.id,
    )
    db.session.add(record)
    db.session.flush()
    return record


@files_bp.route("", methods=["POST"])
def upload_file():
    user = require_permission("files.upload")
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ApiError("No file provided")

    category = (request.form.get("category") or "OTHER").upper()
    if category not in FILE_CATEGORIES:
        raise ApiError(f"Invalid category: {category}")
    order_id, err = parse_int_field(request.form.get("orderId"), "orderId")
    if err:
        raise ApiError(err)
    ticket_id, err = parse_int_field(request.form.get("ticketId"), "ticketId")
    if err:
        raise ApiError(err)
    if order_id:
        get_or_404(Order, order_id, "Order not found")
    if ticket_id:
        get_or_404(Ticket, ticket_id, "Ticket not found")

    record = store_upload(
        upload, user, category=category, description=request.form.get("description") or None
    )

    if order_id:
        db.session.add(OrderFile(order_id=order_id, file_id=record.id))
        log_order_activity(
            order_id, "FILE_UPLOADED", f'File "{record.filename}" was uploaded', user_id=user.id
        )
    if ticket_id:
        db.session.add(TicketFile(ticket_id=ticket_id, file_id=record.id))
        log_ticket_activity(
            ticket_id, "FILE_ATTACHED", f'File "{record.filename}" was attached', user_id=user.id
        )
    db.session.commit()
    current_app.logger.info("File %s uploaded by %s (%s bytes)", record.storage_key, user.email, record.size)
    return ok(record.to_dict(), 201)


@files_bp.route("/<int:file_id>", methods=["GET"])
def download_file(file_id):
    require_permission("files.view")
    record = get_or_404(File, file_id, "File not found")
    try:
        data = get_storage().download(record.storage_key)
    except StorageError as exc:
        current_app.logger.warning("Download of %s failed: %s", record.storage_key, exc)
        raise NotFound("File not found")

    return send_file(
        BytesIO(data),
        mimetype=record.mime_type,
        as_attachment=request.args.get("download") == "true",
        download_name=request.args.get("filename") or record.filename,
    )


@files_bp.route("/<int:file_id>", methods=["DELETE"])
def delete_file(file_id):
    user = require_permission("files.delete")
    record = get_or_404(File, file_id, "File not found")

    get_storage().delete(record.storage_key)
    for link in record.order_links:
        log_order_activity(
            link.order_id, "FILE_DELETED", f'File "{record.filename}" was deleted', user_id=user.id
        )
    for link in record.ticket_links:
        log_ticket_activity(
            link.ticket_id, "FILE_REMOVED", f'File "{record.filename}" was removed', user_id=user.id
        )
    db.session.delete(record)
    db.session.commit()
    return ok({"id": file_id})


@files_bp.route("/storage/<path:key>", methods=["GET"])
def local_storage_object(key):
    """Serve objects written by the local adapter."""
    require_auth()
    storage = get_storage()
    if not isinstance(storage, LocalStorage):
        raise NotFound("File not found")
    try:
        data = storage.download(key)
    except StorageError:
        raise NotFound("File not found")
    record = File.query.filter_by(storage_key=key).first()
    return send_file(
        BytesIO(data),
        mimetype=record.mime_type if record else "application/octet-stream",
        download_name=record.filename if record else key,
    )
