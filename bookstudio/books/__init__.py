from flask import Blueprint

bp = Blueprint("books", __name__, url_prefix="/api/books")

from . import assistant_routes, routes  # noqa: E402,F401
