"""Order documents and the public e-signature flow."""

import uuid

from flask import Blueprint, current_app, request

from bbd_app import db
from bbd_app.auth import can_view_all_orders, require_permission
from bbd_app.common_import_utils import page_args, parse_int_field
from bbd_app.constants import ROLE_ADMIN
from bbd_app.emailer import send_email, signing_request_email
from bbd_app.errors import ApiError, NotFound, ok
from bbd_app.models import Document, Email, File, Order, OrderFile, utcnow
from bbd_app.pdf_signing import SignatureError, decode_signature, embed_signature
from bbd_app.routes import get_or_404, json_body
from bbd_app.storage import StorageError, generate_storage_key, get_storage
from utils.activity import log_order_activity

documents_bp = Blueprint("documents", __name__, url_prefix="/api")

SIGNABLE_STATUSES = ("SENT", "VIEWED")


def signing_url(token):
    return f"{current_app.config['APP_URL']}/sign/{token}"


def _signer_ip():
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr or "unknown"


def _load_for_signing(document_id, token):
    document_id, _ = parse_int_field(document_id, "documentId")
    document = (
        Document.query.filter_by(id=document_id, signing_token=token).first()
        if document_id and token
        else None
    )
    if document is None:
        raise NotFound("Invalid signing token")
    return document


@documents_bp.route("/documents", methods=["GET"])
def list_documents():
    user = require_permission("documents.view")
    page, page_size = page_args(request.args, default_size=50, max_size=100)
    order_id, err = parse_int_field(request.args.get("orderId"), "orderId")
    if err:
        raise ApiError(err)

    query = Document.query
    if order_id:
        query = query.filter(Document.order_id == order_id)
    elif not (user.role_name == ROLE_ADMIN or can_view_all_orders(user)):
        query = query.join(Order, Document.order_id == Order.id).filter(
            db.or_(Order.sales_rep_id == user.id, Order.customer_id == user.id)
        )

    total = query.count()
    documents = (
        query.order_by(Document.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return ok(
        {
            "items": [document.to_dict() for document in documents],
            "pagination": {
                "page": page,
                "pageSize": page_size,
                "total": total,
                "totalPages": -(-total // page_size),
            },
        }
    )


@documents_bp.route("/documents", methods=["POST"])
def create_document():
    user = require_permission("documents.create")
    data = json_body()
    title = (data.get("title") or "").strip()
    if not title:
        raise ApiError("Title is required")
    if not data.get("fileId"):
        raise ApiError("File is required")
    if not data.get("orderId"):
        raise ApiError("Order is required")

    file_record = get_or_404(File, data["fileId"], "File not found")
    if file_record.mime_type != "application/pdf":
        raise ApiError("Only PDF files can be used as documents")
    order = get_or_404(Order, data["orderId"], "Order not found")

    document = Document(
        title=title,
        description=data.get("description") or None,
        file_id=file_record.id,
        order_id=order.id,
        created_by_id=user.id,
    )
    db.session.add(document)
    db.session.commit()
    return ok(document.to_dict(), 201)


@documents_bp.route("/documents/<int:document_id>", methods=["GET"])
def get_document(document_id):
    require_permission("documents.view")
    document = get_or_404(Document, document_id, "Document not found")
    return ok(document.to_dict())


@documents_bp.route("/documents/<int:document_id>/send", methods=["POST"])
def send_document(document_id):
    user = require_permission("documents.send")
    document = get_or_404(Document, document_id, "Document not found")
    if document.status != "DRAFT":
        raise ApiError("Document has already been sent")
    order = document.order
    if not order.customer_email:
        raise ApiError("Order has no customer email")

    document.signing_token = str(uuid.uuid4())
    document.status = "SENT"
    document.sent_at = utcnow()
    url = signing_url(document.signing_token)

    subject, html, text = signing_request_email(
        order.customer_name, document.title, url, sender_name=user.full_name
    )
    result = send_email(order.customer_email, subject, html, text)
    db.session.add(
        Email(
            subject=subject,
            body=html,
            to_address=order.customer_email,
            from_address=current_app.config["EMAIL_FROM"],
            status="SENT" if result.success else "FAILED",
            sent_at=utcnow() if result.success else None,
            fail_reason=result.error,
            external_id=result.message_id,
            order_id=order.id,
            sent_by_id=user.id,
        )
    )
    log_order_activity(
        order.id, "DOCUMENT_SENT", f'Document "{document.title}" sent for signing', user_id=user.id
    )
    db.session.commit()
    return ok({"signingUrl": url, "emailSent": result.success})


@documents_bp.route("/sign/<document_id>", methods=["GET"])
def signing_details(document_id):
    """Public: the document a signer is about to sign. First view marks it VIEWED."""
    document = _load_for_signing(document_id, request.args.get("token"))
    if document.status == "SENT":
        document.status = "VIEWED"
        document.viewed_at = utcnow()
        db.session.commit()
    data = document.to_dict()
    data["fileUrl"] = get_storage().get_url(document.file.storage_key)
    data["customerName"] = document.order.customer_name
    return ok(data)


@documents_bp.route("/sign/<document_id>", methods=["POST"])
@documents_bp.route("/documents/<document_id>/sign", methods=["POST"])
def sign_document(document_id):
    data = json_body()
    signature = data.get("signatureData")
    token = data.get("signingToken")
    if not signature:
        raise ApiError("Signature is required")
    if not token:
        raise ApiError("Signing token is required")
    try:
        signature_png = decode_signature(signature)
    except SignatureError as exc:
        raise ApiError(str(exc))

    document = _load_for_signing(document_id, token)
    if document.status == "SIGNED":
        raise ApiError("Document has already been signed")
    if document.status not in SIGNABLE_STATUSES:
        raise ApiError("Document is not ready for signing")

    storage = get_storage()
    signed_at = utcnow()
    try:
        original = storage.download(document.file.storage_key)
        signed_pdf = embed_signature(original, signature_png, signed_at)
    except SignatureError as exc:
        raise ApiError(str(exc))
    except StorageError as exc:
        current_app.logger.exception("Signing document %s failed: %s", document.id, exc)
        raise ApiError("Failed to sign document", status=500)

    filename = f"signed-{document.file.filename}"
    key = generate_storage_key(filename)
    storage.upload(key, signed_pdf, "application/pdf", filename)
    signed_file = File(
        filename=filename,
        storage_key=key,
        mime_type="application/pdf",
        size=len(signed_pdf),
        category="CONTRACT",
        description=f"Signed version of {document.title}",
        uploaded_by_id=document.created_by_id,
    )
    db.session.add(signed_file)
    db.session.flush()
    db.session.add(OrderFile(order_id=document.order_id, file_id=signed_file.id))

    signer_ip = _signer_ip()
    document.status = "SIGNED"
    document.signed_at = signed_at
    document.signed_file_id = signed_file.id
    document.signed_by_id = document.order.customer_id
    document.signer_ip = signer_ip
    document.signer_user_agent = (request.headers.get("User-Agent") or "unknown")[:500]
    log_order_activity(
        document.order_id,
        "DOCUMENT_SIGNED",
        f'Document "{document.title}" was signed',
        user_id=document.order.customer_id,
        metadata={"signerIp": signer_ip, "documentId": document.id},
    )
    db.session.commit()
    current_app.logger.info("Document %s signed from %s", document.id, signer_ip)
    return ok({"message": "Document signed successfully"})
