# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/posfleet/routes/auth.py
"""
Session issuance.

Accounts are provisioned by administrators (CLI: flask users create); these
routes only exchange credentials for a bearer token and revoke it again.
"""

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_auth
from ..errors import WorkflowError
from ..services import auth_service, permission_service, session_service
from ..services.concurrency import commit_session
from ._helpers import error_response, json_body, unexpected_error


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Request body:
    {
        "username": str (or "email"),
        "password": str
    }

    Returns user info, effective permissions and the session token.
    Token must be included in the Authorization header for protected routes.
    """
    try:
        data = json_body()
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.info("Failed login for %s", username)
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user)
        commit_session()

        return jsonify({
            "user": user.to_dict(),
            "permissions": sorted(permission_service.get_role_permissions(user.role)),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
            "message": "Login successful",
        }), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to login user")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the session token used for this request."""
    try:
        session_service.revoke_session(g.session_token)
        commit_session()
        return jsonify({"message": "Logged out"}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to logout user")


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_role_permissions(user.role)),
    }), 200
