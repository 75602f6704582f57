# app.py
import hmac
import json
import logging
import traceback
from http import HTTPStatus

from flask import Flask, Response, request
from slack_sdk.signature import SignatureVerifier

from slack_bot import CommandDispatcher, InvalidArgument
from store import StorageError

logger = logging.getLogger(__name__)

WEBHOOK_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class AuthError(Exception):
    """The request's token or signature did not match."""


class MethodError(Exception):
    """The request used a verb other than POST."""


def abort(code):
    """Plain-text error response carrying only the status phrase."""
    return Response(
        HTTPStatus(code).phrase + "\n",
        status=code,
        content_type="text/plain; charset=utf-8",
    )


def render(message):
    return Response(
        json.dumps(message.to_dict()),
        status=200,
        content_type="application/json; charset=utf-8",
    )


def is_cert_check(req):
    return req.method == "GET" and req.values.get("ssl_check") == "1"


def create_app(config, store):
    """
    Build the Flask app serving the slash-command webhook.

    Args:
        config: Config with the shared token and optional signing secret
        store: an open RecordStore shared by all requests
    """
    app = Flask(__name__)
    dispatcher = CommandDispatcher(store)
    verifier = SignatureVerifier(config.signing_secret) if config.signing_secret else None

    def check_request():
        if request.method != "POST":
            raise MethodError(request.method)

        if verifier is not None:
            body = request.get_data()
            if not verifier.is_valid_request(body, dict(request.headers)):
                raise AuthError("bad request signature")

        token = request.form.get("token", "")
        if not hmac.compare_digest(token.encode("utf-8"), config.token.encode("utf-8")):
            raise AuthError("token mismatch")

    # ---------- Health Check ----------
    @app.route("/healthz", methods=["GET"])
    def health_check():
        logger.debug("Health check called")
        return {"status": "running", "store": store.backend}, 200

    # ---------- Slash Command Webhook ----------
    @app.route("/", defaults={"path": ""}, methods=WEBHOOK_METHODS)
    @app.route("/<path:path>", methods=WEBHOOK_METHODS)
    def webhook(path):
        if is_cert_check(request):
            logger.info("SSL check from Slack")
            return Response(status=200)

        check_request()

        text = request.form.get("text", "")
        logger.info("Command received from user %s: '%s'", request.form.get("user_id", "?"), text)
        message = dispatcher.dispatch(text)
        if message is None:
            return Response(status=200)
        return render(message)

    # ---------- Error Handlers ----------
    @app.errorhandler(MethodError)
    def method_not_allowed(e):
        logger.warning("Rejected %s request to %s", e, request.path)
        return abort(405)

    @app.errorhandler(AuthError)
    def bad_request(e):
        logger.warning("Rejected request to %s: %s", request.path, e)
        return abort(400)

    @app.errorhandler(StorageError)
    @app.errorhandler(InvalidArgument)
    def internal_error(e):
        logger.error("Error handling command: %s", e)
        logger.error("".join(traceback.format_exception(type(e), e, e.__traceback__)))
        return abort(500)

    return app
