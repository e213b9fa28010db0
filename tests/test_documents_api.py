import base64
import unittest
from io import BytesIO

from tests.helpers import AppTestCase, make_order, make_user
from tests.test_storage_and_signing import sample_pdf, sample_png

from bbd_app import db
from bbd_app.constants import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_SALES_REP
from bbd_app.models import Document, Email, File, OrderActivity


class FileApiTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.admin = make_user(ROLE_ADMIN)
        self.order = make_order(self.admin)
        self.login(self.admin)

    def _upload(self, content=b"hello", filename="notes.txt", **form):
        data = {"file": (BytesIO(content), filename)}
        data.update(form)
        return self.post("/api/files", data=data, content_type="multipart/form-data")

    def test_upload_attach_download_delete(self):
        resp = self._upload(category="permit", orderId=str(self.order.id))
        self.assertEqual(resp.status_code, 201)
        file_id = resp.get_json()["data"]["id"]
        record = db.session.get(File, file_id)
        self.assertEqual(record.category, "PERMIT")
        self.assertEqual(record.size, 5)

        resp = self.get(f"/api/files/{file_id}?download=true")
        self.assertEqual(resp.data, b"hello")
        self.assertIn("attachment", resp.headers["Content-Disposition"])

        self.assertEqual(self.delete(f"/api/files/{file_id}").status_code, 200)
        self.assertIsNone(db.session.get(File, file_id))
        types = [a.type for a in OrderActivity.query.filter_by(order_id=self.order.id).all()]
        self.assertIn("FILE_UPLOADED", types)
        self.assertIn("FILE_DELETED", types)

    def test_upload_validation(self):
        resp = self.post("/api/files", data={}, content_type="multipart/form-data")
        self.assertEqual(resp.get_json()["error"], "No file provided")

        resp = self._upload(category="selfie")
        self.assertEqual(resp.get_json()["error"], "Invalid category: SELFIE")

        resp = self._upload(orderId="999999")
        self.assertEqual(resp.status_code, 404)


class DocumentSigningFlowTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.rep = make_user(ROLE_SALES_REP, first_name="Rex", last_name="Seller")
        self.customer = make_user(ROLE_CUSTOMER, email="signer@example.com")
        self.order = make_order(
            self.rep, customer_email="signer@example.com", customer_id=self.customer.id
        )
        self.login(self.rep)

        resp = self.post(
            "/api/files",
            data={"file": (BytesIO(sample_pdf()), "contract.pdf"), "orderId": str(self.order.id)},
            content_type="multipart/form-data",
        )
        self.pdf_id = resp.get_json()["data"]["id"]
        self.signature = "data:image/png;base64," + base64.b64encode(sample_png()).decode()

    def _create_document(self):
        resp = self.post(
            "/api/documents",
            json={"title": "Purchase Agreement", "fileId": self.pdf_id, "orderId": self.order.id},
        )
        self.assertEqual(resp.status_code, 201)
        return resp.get_json()["data"]["id"]

    def test_full_signing_flow(self):
        document_id = self._create_document()

        resp = self.post(f"/api/documents/{document_id}/send")
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()["data"]
        self.assertTrue(data["emailSent"])
        token = db.session.get(Document, document_id).signing_token
        self.assertTrue(data["signingUrl"].endswith(f"/sign/{token}"))
        self.assertEqual(Email.query.filter_by(order_id=self.order.id).one().status, "SENT")

        resp = self.post(f"/api/documents/{document_id}/send")
        self.assertEqual(resp.get_json()["error"], "Document has already been sent")

        # Signing is public.
        self.post("/api/auth/logout")
        resp = self.get(f"/api/sign/{document_id}?token={token}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["data"]["status"], "VIEWED")

        resp = self.post(
            f"/api/sign/{document_id}",
            json={"signatureData": self.signature, "signingToken": token},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "pytest"},
        )
        self.assertEqual(resp.status_code, 200)

        document = db.session.get(Document, document_id)
        self.assertEqual(document.status, "SIGNED")
        self.assertEqual(document.signer_ip, "203.0.113.7")
        self.assertEqual(document.signed_by_id, self.customer.id)
        self.assertEqual(document.signed_file.category, "CONTRACT")
        self.assertEqual(document.signed_file.filename, "signed-contract.pdf")

        resp = self.post(
            f"/api/documents/{document_id}/sign",
            json={"signatureData": self.signature, "signingToken": token},
        )
        self.assertEqual(resp.get_json()["error"], "Document has already been signed")

    def test_signing_validation(self):
        document_id = self._create_document()

        resp = self.post(f"/api/sign/{document_id}", json={"signingToken": "x"})
        self.assertEqual(resp.get_json()["error"], "Signature is required")
        resp = self.post(f"/api/sign/{document_id}", json={"signatureData": self.signature})
        self.assertEqual(resp.get_json()["error"], "Signing token is required")
        resp = self.post(
            f"/api/sign/{document_id}", json={"signatureData": "garbage!", "signingToken": "x"}
        )
        self.assertEqual(resp.get_json()["error"], "Invalid signature data")
        resp = self.post(
            f"/api/sign/{document_id}", json={"signatureData": self.signature, "signingToken": "x"}
        )
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()["error"], "Invalid signing token")

    def test_draft_cannot_be_signed(self):
        document_id = self._create_document()
        document = db.session.get(Document, document_id)
        document.signing_token = "draft-token"
        db.session.commit()

        resp = self.post(
            f"/api/sign/{document_id}",
            json={"signatureData": self.signature, "signingToken": "draft-token"},
        )
        self.assertEqual(resp.get_json()["error"], "Document is not ready for signing")

    def test_only_pdfs_become_documents(self):
        resp = self.post(
            "/api/files",
            data={"file": (BytesIO(b"plain"), "notes.txt")},
            content_type="multipart/form-data",
        )
        text_id = resp.get_json()["data"]["id"]
        resp = self.post(
            "/api/documents",
            json={"title": "Notes", "fileId": text_id, "orderId": self.order.id},
        )
        self.assertEqual(resp.get_json()["error"], "Only PDF files can be used as documents")

        resp = self.post("/api/documents", json={"fileId": text_id, "orderId": self.order.id})
        self.assertEqual(resp.get_json()["error"], "Title is required")


if __name__ == "__main__":
    unittest.main()
