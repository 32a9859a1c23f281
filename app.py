import os
import secrets
import time
from functools import wraps

from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_from_directory, url_for
from werkzeug.utils import secure_filename

from accounts import AccountRegistry
from config import Settings
from database import open_store
from errors import AccountConfigError, ValidationError
from logger import setup_logging
from models import JobStatus, format_ts, utcnow
from scheduler import SchedulerService, build_scheduler

load_dotenv()


def create_app(settings: Settings = None, store=None, accounts=None, scheduler=None,
               start_scheduler: bool = False) -> Flask:
    if settings is None:
        settings = Settings.from_env()
    if store is None:
        store = open_store(settings)
    if accounts is None:
        accounts = AccountRegistry.from_settings(settings)
    if scheduler is None:
        scheduler = build_scheduler(settings, store=store, accounts=accounts)
    os.makedirs(settings.upload_dir, exist_ok=True)
    upload_dir = os.path.abspath(settings.upload_dir)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.config["STORE"] = store
    app.config["ACCOUNTS"] = accounts
    app.config["SCHEDULER"] = scheduler

    # ─────────────────────────────────────────────────────
    # ADMIN KEY
    # ─────────────────────────────────────────────────────
    def require_admin(view):
        """Fail closed: without ADMIN_API_KEY only ALLOW_OPEN_ADMIN=1 opens the API."""
        @wraps(view)
        def wrapper(*args, **kwargs):
            expected = settings.admin_api_key
            if not expected:
                if settings.allow_open_admin:
                    return view(*args, **kwargs)
                return jsonify({"error": "ADMIN_API_KEY not set"}), 503
            key = request.headers.get("X-Admin-Key") or request.args.get("key") or ""
            if not secrets.compare_digest(key, expected):
                return jsonify({"error": "Unauthorized"}), 401
            return view(*args, **kwargs)
        return wrapper

    def public_url(filename):
        if settings.app_base_url:
            return f"{settings.app_base_url.rstrip('/')}/uploads/{filename}"
        return url_for("uploaded_file", filename=filename, _external=True)

    def save_upload(file):
        safe = secure_filename(file.filename or "") or "upload"
        name = f"{int(time.time() * 1000)}_{safe}"
        file.save(os.path.join(upload_dir, name))
        return name

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({"error": str(e)}), 400

    @app.route("/health")
    def health():
        return jsonify({"ok": True, "time": format_ts(utcnow())})

    # ─────────────────────────────────────────────────────
    # UPLOADS
    # ─────────────────────────────────────────────────────
    @app.route("/uploads/<path:filename>")
    def uploaded_file(filename):
        return send_from_directory(upload_dir, filename, max_age=31536000)

    @app.post("/upload")
    @require_admin
    def upload():
        file = request.files.get("image") or request.files.get("file")
        if not file or not file.filename:
            return jsonify({"error": "No file"}), 400
        name = save_upload(file)
        return jsonify({"ok": True, "url": public_url(name), "filename": name})

    @app.post("/upload-multi")
    @require_admin
    def upload_multi():
        files = [f for f in request.files.getlist("images") if f and f.filename]
        if not files:
            return jsonify({"error": "No files"}), 400
        out = []
        for f in files:
            name = save_upload(f)
            out.append({"name": f.filename, "url": public_url(name), "filename": name})
        return jsonify({"ok": True, "files": out})

    # ─────────────────────────────────────────────────────
    # POSTS
    # ─────────────────────────────────────────────────────
    @app.post("/posts/schedule")
    @require_admin
    def schedule_post():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}
        account = payload.get("account")
        media_url = payload.get("mediaUrl") or payload.get("imageUrl")
        if isinstance(account, str) and account.strip() and account.strip() not in accounts:
            return jsonify({"error": f"Unknown account '{account}'"}), 400

        job = store.enqueue(account, media_url, payload.get("when"), payload.get("caption") or "")
        app.logger.info("[schedule] %s -> %s at %s (from %s)",
                        job.id, job.account, format_ts(job.scheduled_at), payload.get("when"))
        return jsonify({"ok": True, "id": job.id, "whenISO": format_ts(job.scheduled_at),
                        "job": job.to_dict()}), 201

    @app.get("/posts")
    @require_admin
    def list_posts():
        status = request.args.get("status") or None
        try:
            jobs = store.list_jobs(status=status, account=request.args.get("account") or None)
        except ValueError:
            return jsonify({"error": f"Unknown status '{status}'"}), 400
        return jsonify([j.to_dict() for j in jobs])

    @app.get("/posts/pending")
    @require_admin
    def pending_posts():
        return jsonify([j.to_dict() for j in store.list_jobs(status="queued")])

    @app.get("/posts/<job_id>")
    @require_admin
    def get_post(job_id):
        job = store.get(job_id)
        if not job:
            return jsonify({"error": "job not found"}), 404
        return jsonify(job.to_dict())

    @app.post("/posts/<job_id>/retry")
    @require_admin
    def retry_post(job_id):
        """Re-enqueue a failed job as a new job due now."""
        job = store.get(job_id)
        if not job:
            return jsonify({"error": "job not found"}), 404
        if job.status != JobStatus.FAILED:
            return jsonify({"error": f"job is {job.status.value}, only failed jobs can be retried"}), 409
        retry = store.enqueue(job.account, job.media_url, utcnow(), job.caption)
        store.log_activity(job.id, job.account, "retry", "info", f"Re-enqueued as job {retry.id}")
        return jsonify({"ok": True, "id": retry.id, "retryOf": job.id}), 201

    # ─────────────────────────────────────────────────────
    # OPERATOR
    # ─────────────────────────────────────────────────────
    @app.route("/cron/run", methods=["GET", "POST"])
    @require_admin
    def cron_run():
        result = scheduler.run_tick()
        status = 409 if result.skipped else 200
        return jsonify({"ok": not result.skipped, **result.to_dict()}), status

    @app.get("/api/activity")
    @require_admin
    def api_activity():
        try:
            limit = int(request.args.get("limit", 50))
        except ValueError:
            return jsonify({"error": "limit must be an integer"}), 400
        return jsonify(store.recent_activity(request.args.get("job_id") or None, limit))

    @app.get("/accounts")
    @require_admin
    def list_accounts():
        return jsonify(accounts.summary())

    @app.post("/accounts/reload")
    @require_admin
    def reload_accounts():
        try:
            count = accounts.reload()
        except AccountConfigError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify({"ok": True, "accounts": count})

    if start_scheduler and settings.run_scheduler and not os.environ.get("WERKZEUG_RUN_MAIN"):
        app.logger.info("⏰ [Scheduler] Starting background thread...")
        service = SchedulerService(scheduler, settings.tick_interval)
        service.start()
        app.config["SCHEDULER_SERVICE"] = service

    return app


def wsgi_app() -> Flask:
    """Entry point for gunicorn: `gunicorn 'app:wsgi_app()'`."""
    setup_logging()
    return create_app(start_scheduler=True)


if __name__ == "__main__":
    setup_logging()
    application = create_app(start_scheduler=True)
    application.run(host="0.0.0.0", port=application.config["SETTINGS"].port,
                    debug=False, use_reloader=False)
