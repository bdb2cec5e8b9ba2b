import logging
import os

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import MethodNotAllowed

from track_view_functions import *
from view_stores import build_store_from_env

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.json.sort_keys = False
CORS(
    app,
    origins="*",
    methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
    send_wildcard=True,
)

TOP_VIEWED_LIMIT = int(os.environ.get("TOP_VIEWED_LIMIT", DEFAULT_TOP_LIMIT))
INVALID_REQUEST_MESSAGE = "Invalid type or ID"

store = build_store_from_env()


def record_view(raw_type, raw_id):
    """
    Count one view of an item.

    Args:
        raw_type (Any): Content type as sent by the client.
        raw_id (Any): Content identifier as sent by the client.

    Returns:
        int: View count after the increment.

    Raises:
        InvalidArgument: When the pair does not sanitize to a valid key.
        StorageError: When the increment could not be persisted.
    """
    content_type, content_id = parse_view_request(raw_type, raw_id)
    return store.increment(build_view_key(content_type, content_id))


def get_views(raw_type, raw_id):
    """
    Read the view count of an item without changing it.

    Returns:
        int: Stored count, 0 for items never viewed.
    """
    content_type, content_id = parse_view_request(raw_type, raw_id)
    return store.get(build_view_key(content_type, content_id))


def get_top_viewed(limit: int = TOP_VIEWED_LIMIT):
    """Return the most viewed movie and tv ids."""
    return build_top_viewed(store.all(), limit)


@app.route("/track-view", methods=["GET", "POST", "OPTIONS"])
@app.route("/api/track-view", methods=["GET", "POST", "OPTIONS"])
@app.route("/api/get-views", methods=["GET", "OPTIONS"])
def track_view():
    """
    Handle view tracking requests.

    POST records a view, GET with ``type``/``id`` returns the count of one item,
    GET without them returns the most viewed ids per type.

    Returns:
        Response: Flask response with JSON payload and status code.
    """
    if request.method == "OPTIONS":
        return "", 204

    if request.method == "POST":
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}
        try:
            views = record_view(payload.get("type"), payload.get("id"))
        except InvalidArgument:
            return jsonify({"error": INVALID_REQUEST_MESSAGE}), 400
        except StorageError:
            return jsonify({"error": "Unable to record view"}), 500
        return jsonify({"success": True, "views": views})

    if "type" not in request.args and "id" not in request.args:
        return jsonify(get_top_viewed())

    try:
        views = get_views(request.args.get("type"), request.args.get("id"))
    except InvalidArgument:
        return jsonify({"error": INVALID_REQUEST_MESSAGE}), 400
    return jsonify({"views": views})


@app.errorhandler(MethodNotAllowed)
def method_not_allowed(error):
    """Render 405 responses as JSON."""
    return jsonify({"error": "Method not allowed"}), 405


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5003)), debug=True)
