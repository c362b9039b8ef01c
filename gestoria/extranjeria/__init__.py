from flask import Blueprint

extranjeria_bp = Blueprint("extranjeria", __name__, url_prefix="/extranjeria")

from gestoria.extranjeria import routes  # noqa: E402,F401
