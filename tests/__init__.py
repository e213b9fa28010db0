import os
import tempfile

# Configure the app before any test module imports it.
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
os.environ["ORDER_PROCESS_DATABASE_URI"] = "sqlite://"
os.environ["WTF_CSRF_ENABLED"] = "false"
os.environ["STORAGE_ADAPTER"] = "local"
os.environ["UPLOAD_FOLDER"] = tempfile.mkdtemp(prefix="bbd-test-uploads-")
os.environ["ORDER_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["SMTP_HOST"] = ""
os.environ["GEMINI_API_KEY"] = ""
