import unittest

from flask import Flask
from flask_wtf.csrf import CSRFProtect

from bbd_app.errors import NotFound, register_error_handlers


def build_app():
    app = Flask(__name__)
    app.config.update(SECRET_KEY="test-secret", WTF_CSRF_ENABLED=True)
    CSRFProtect(app)
    register_error_handlers(app)

    @app.route("/form", methods=["POST"])
    def form():
        return "saved"

    @app.route("/missing")
    def missing():
        raise NotFound("Order not found")

    return app


class ErrorHandlerTests(unittest.TestCase):
    def setUp(self):
        self.client = build_app().test_client()

    def test_csrf_failures_use_the_json_envelope(self):
        resp = self.client.post("/form", data={"name": "x"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(
            resp.get_json(), {"success": False, "error": "The CSRF token is missing."}
        )

    def test_api_errors_keep_their_status(self):
        resp = self.client.get("/missing")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json(), {"success": False, "error": "Order not found"})

    def test_unknown_routes_are_json(self):
        resp = self.client.get("/nowhere")
        self.assertEqual(resp.status_code, 404)
        self.assertFalse(resp.get_json()["success"])


if __name__ == "__main__":
    unittest.main()
