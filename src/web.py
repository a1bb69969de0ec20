"""Flask front end for the image generator.

Run with `python -m src.main serve`. The browser form posts to `/generate`;
each browser session gets its own `GenerationFlow` (and, in the hosted
variant, its own request counter keyed by the session id).
"""
import logging
import os
import uuid

from flask import Flask, Response, abort, flash, redirect, render_template, request, session, url_for

from .catalog import get_catalog
from .errors import SubmissionInProgress
from .flow import FlowState, GenerationFlow
from .image_gen import GenerationRequest, ImageGenerator
from .rate_limit import DEFAULT_MAX_REQUESTS, DEFAULT_WINDOW_MS, RateLimiter, clear_state
from .sessions import DEFAULT_MAX_SESSIONS, SessionRegistry
from .state_store import StateStore


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def create_app(config: dict = None) -> Flask:
    app = Flask(__name__)
    app.config.update(
        SECRET_KEY=os.getenv("FLASK_SECRET_KEY") or os.urandom(24).hex(),
        APP_VARIANT=(os.getenv("APP_VARIANT") or "byok").lower(),
        HF_API_TOKEN=os.getenv("HF_API_TOKEN"),
        INFERENCE_API_URL=os.getenv("INFERENCE_API_URL"),
        DECLINE_REDIRECT_URL=os.getenv("DECLINE_REDIRECT_URL", "https://www.google.com"),
        RATE_LIMIT_MAX_REQUESTS=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", str(DEFAULT_MAX_REQUESTS))),
        RATE_LIMIT_WINDOW_MS=int(os.getenv("RATE_LIMIT_WINDOW_MS", str(DEFAULT_WINDOW_MS))),
        DRY_RUN=_env_flag("DRY_RUN"),
        MAX_SESSIONS=int(os.getenv("MAX_SESSIONS", str(DEFAULT_MAX_SESSIONS))),
        SESSION_IDLE_SECONDS=float(os.getenv("SESSION_IDLE_SECONDS", "0")) or None,
    )
    if config:
        app.config.update(config)

    variant = app.config["APP_VARIANT"]
    catalog = get_catalog(variant)
    hosted = variant == "hosted"

    generator = app.config.get("GENERATOR") or ImageGenerator(
        api_url=app.config["INFERENCE_API_URL"], catalog=catalog, dry_run=app.config["DRY_RUN"]
    )
    store = app.config.get("STATE_STORE") or (StateStore() if hosted else None)
    clock = app.config.get("CLOCK")

    # an idle session outlives its rate-limit window, so dropping its counter loses nothing
    idle_seconds = app.config["SESSION_IDLE_SECONDS"] or app.config["RATE_LIMIT_WINDOW_MS"] / 1000.0

    def session_id() -> str:
        if "sid" not in session:
            session["sid"] = uuid.uuid4().hex
        return session["sid"]

    def new_flow(sid: str) -> GenerationFlow:
        limiter = None
        if hosted:
            kwargs = {"clock": clock} if clock is not None else {}
            limiter = RateLimiter(
                store,
                max_requests=app.config["RATE_LIMIT_MAX_REQUESTS"],
                window_ms=app.config["RATE_LIMIT_WINDOW_MS"],
                namespace=sid,
                **kwargs,
            )
        return GenerationFlow(
            generator,
            catalog=catalog,
            rate_limiter=limiter,
            confirm_nsfw=hosted,
            on_decline=lambda: logger.info("Session %s declined NSFW confirmation", sid),
        )

    def drop_session(sid: str, flow: GenerationFlow):
        if flow.rate_limiter is not None:
            clear_state(flow.rate_limiter.store, sid)

    registry_kwargs = {"clock": app.config["SESSION_CLOCK"]} if app.config.get("SESSION_CLOCK") else {}
    sessions = SessionRegistry(
        new_flow,
        max_sessions=app.config["MAX_SESSIONS"],
        idle_seconds=idle_seconds,
        on_evict=drop_session,
        **registry_kwargs,
    )

    def current_flow() -> GenerationFlow:
        return sessions.get(session_id())

    def credential():
        if hosted:
            return app.config["HF_API_TOKEN"]
        return session.get("api_key")

    def report(outcome):
        if outcome.ok:
            session["handle_id"] = outcome.handle.handle_id
            return
        message = f"Error generating image: {str(outcome.error).rstrip('.')}."
        if not hosted:
            message += " Please check your API key and try again."
        flash(message, "error")

    @app.route("/", methods=["GET"])
    def index():
        if not hosted and not credential():
            return redirect(url_for("edit_api_key"))
        flow = current_flow()
        handle = flow.slot.get(session.get("handle_id", ""))
        form = session.get("form", {})
        selected = form.get("model_id") or catalog[0].id
        remaining = flow.rate_limiter.remaining() if flow.rate_limiter is not None else None
        return render_template(
            "index.html",
            models=catalog,
            selected=selected,
            form=form,
            handle=handle,
            hosted=hosted,
            remaining=remaining,
            awaiting=flow.state is FlowState.AWAITING_CONFIRMATION,
            pending_model=flow.pending_model,
            busy=flow.state is FlowState.SUBMITTING,
        )

    @app.route("/generate", methods=["POST"])
    def generate():
        token = credential()
        if not token:
            if hosted:
                flash("Error generating image: the server has no API token configured.", "error")
                return redirect(url_for("index"))
            return redirect(url_for("edit_api_key"))

        form = {
            "model_id": request.form.get("model_id", ""),
            "prompt": request.form.get("prompt", ""),
            "negative_prompt": request.form.get("negative_prompt", ""),
        }
        session["form"] = form
        try:
            gen_request = GenerationRequest(form["prompt"], form["model_id"], negative_prompt=form["negative_prompt"])
        except ValueError:
            flash("Please describe the image you want.", "error")
            return redirect(url_for("index"))

        try:
            outcome = current_flow().submit(gen_request, token)
        except SubmissionInProgress as exc:
            flash(str(exc), "error")
            return redirect(url_for("index"))
        if outcome is not None:
            report(outcome)
        return redirect(url_for("index"))

    @app.route("/confirm", methods=["POST"])
    def confirm():
        flow = current_flow()
        if flow.state is not FlowState.AWAITING_CONFIRMATION:
            return redirect(url_for("index"))
        report(flow.confirm())
        return redirect(url_for("index"))

    @app.route("/decline", methods=["POST"])
    def decline():
        flow = current_flow()
        if flow.state is FlowState.AWAITING_CONFIRMATION:
            flow.decline()
        return redirect(app.config["DECLINE_REDIRECT_URL"])

    @app.route("/images/<handle_id>", methods=["GET"])
    def image(handle_id):
        handle = current_flow().slot.get(handle_id)
        if handle is None:
            abort(404)
        mimetype = handle.content_type if handle.content_type.startswith("image/") else "application/octet-stream"
        resp = Response(handle.data, mimetype=mimetype)
        resp.headers["X-Content-Type-Options"] = "nosniff"
        return resp

    @app.route("/api-key", methods=["GET", "POST"])
    def edit_api_key():
        if hosted:
            return redirect(url_for("index"))
        if request.method == "POST":
            key = request.form.get("api_key", "").strip()
            if not key:
                flash("Please enter an API key.", "error")
                return redirect(url_for("edit_api_key"))
            session["api_key"] = key
            return redirect(url_for("index"))
        return render_template("api_key.html", has_key=bool(session.get("api_key")))

    @app.route("/logout", methods=["POST"])
    def logout():
        current_flow().slot.clear()
        session.pop("api_key", None)
        session.pop("handle_id", None)
        session.pop("form", None)
        if hosted:
            return redirect(url_for("index"))
        return redirect(url_for("edit_api_key"))

    app.extensions["generation_sessions"] = sessions
    return app
