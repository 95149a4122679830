"""Bar tab Flask app: bartender console, customer view, friend alerts and Breathy.

Run from project root:
    python app.py
"""

import os
import sqlite3
from pathlib import Path
from typing import Any
from urllib.parse import quote

from flask import Flask, jsonify, redirect, request, session as flask_session

from bartab import breathy, config, realtime
from bartab import alert_store, auth_store, tab_store
from bartab.alerts import validate_alert
from bartab.context import build_context
from bartab.menu import get_item, list_all_flat, list_by_category
from bartab.models import SEXES, STATUS_ACTIVE, Customer, TabSession
from bartab.time_utils import utcnow
from bartab.tokens import is_well_formed, join_path, join_url

app = Flask(__name__)
app.config.from_object(config.Config)

MIN_WEIGHT_LB = 80.0
MAX_WEIGHT_LB = 400.0
MAX_DRINK_ML = 2000.0
MAX_DRINK_NAME = 60
MAX_PHONE_CHARS = 40
AUTH_USER_KEY = "auth_user_id"
STAFF_HEADER = "X-Staff-Token"
SIGN_UP_PATH = "/sign-up"


def _db_path() -> str:
    return config.db_path()


def _ensure_db() -> None:
    db_path = Path(_db_path())
    db_path.parent.mkdir(parents=True, exist_ok=True)
    auth_store.init_db(str(db_path))
    tab_store.init_db(str(db_path))
    alert_store.init_db(str(db_path))
    realtime.init_db(str(db_path))


@app.before_request
def _prepare_db():
    if request.endpoint != "healthz":
        _ensure_db()


@app.errorhandler(sqlite3.Error)
def _store_unavailable(exc):
    app.logger.exception("Session store error")
    return jsonify({"error": "Sorry, something went wrong on our side. Please try again."}), 503


def _parse_sex(value: Any) -> str | None:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in SEXES:
            return lowered
    return None


def _parse_weight_lb(value: Any) -> float | None:
    try:
        weight = float(value)
    except (TypeError, ValueError):
        return None
    if weight < MIN_WEIGHT_LB or weight > MAX_WEIGHT_LB:
        return None
    return weight


def _parse_phone(value: Any) -> tuple[str | None, str | None]:
    """Return (phone, error); blank means no trusted contact."""
    if value is None:
        return None, None
    phone = str(value).strip()
    if not phone:
        return None, None
    if len(phone) > MAX_PHONE_CHARS:
        return None, "Phone number must be 40 characters or fewer"
    return phone, None


def _safe_redirect(target: Any) -> str | None:
    if not isinstance(target, str):
        return None
    target = target.strip()
    if not target.startswith("/") or target.startswith("//"):
        return None
    return target


def _require_user_id() -> int | None:
    user_id = flask_session.get(AUTH_USER_KEY)
    return user_id if isinstance(user_id, int) else None


def _auth_required_error():
    return jsonify({"error": "Authentication required"}), 401


def _sign_up_redirect():
    destination = request.full_path if request.query_string else request.path
    return redirect(f"{SIGN_UP_PATH}?redirect={quote(destination, safe='')}")


def _staff_allowed() -> bool:
    token = config.staff_token()
    if not token:
        return True
    return request.headers.get(STAFF_HEADER, "") == token


def _staff_required_error():
    return jsonify({"error": "Staff access required"}), 403


def _current_customer() -> Customer | None:
    user_id = _require_user_id()
    if user_id is None:
        return None
    return tab_store.get_customer_for_user(_db_path(), user_id)


def _check_high_risk(session: TabSession, customer: Customer, bac: float) -> None:
    if session.status != STATUS_ACTIVE:
        return
    alert = alert_store.maybe_create_high_risk_alert(_db_path(), session=session, customer=customer, bac=bac)
    if alert is not None:
        app.logger.info("High-risk alert created for session %s", session.id)


def _session_view(session: TabSession, customer: Customer | None) -> dict[str, Any]:
    """Session payload with a freshly derived BAC snapshot."""
    body = session.to_dict()
    if customer is None:
        body["customer"] = None
        body["context"] = None
        return body
    ctx = build_context(customer, session, now=utcnow())
    _check_high_risk(session, customer, ctx.bac)
    body["customer"] = customer.to_dict()
    body["context"] = ctx.to_dict()
    return body


def _owned_session(session_id: int) -> tuple[TabSession | None, Customer | None, Any]:
    """Load a session the current user may see. Third item is an error response."""
    session = tab_store.get_session(_db_path(), session_id)
    if session is None:
        return None, None, (jsonify({"error": "Session not found"}), 404)
    customer = _current_customer()
    if customer is not None and session.customer_id == customer.id:
        return session, customer, None
    if _staff_allowed():
        owner = tab_store.get_customer(_db_path(), session.customer_id) if session.customer_id else None
        return session, owner, None
    if _require_user_id() is None:
        return None, None, _auth_required_error()
    return None, None, (jsonify({"error": "Session not found"}), 404)


def _join(token: str) -> tuple[TabSession | None, str]:
    if not is_well_formed(token):
        return None, "This link is invalid or the session has ended."
    customer = _current_customer()
    if customer is None:
        return None, "Complete your profile before joining a session."
    return tab_store.join_session(_db_path(), token=token, customer_id=customer.id)


@app.route("/healthz")
def healthz():
    return jsonify({"ok": True})


@app.route(SIGN_UP_PATH)
def sign_up():
    return jsonify({
        "sign_in": "/api/auth/login",
        "register": "/api/auth/register",
        "redirect": _safe_redirect(request.args.get("redirect")),
    })


# ---- auth ----


@app.route("/api/auth/me")
def api_auth_me():
    user_id = _require_user_id()
    user = auth_store.get_user_by_id(_db_path(), user_id) if user_id is not None else None
    if user is None:
        return jsonify({"authenticated": False, "user": None, "customer": None})
    customer = tab_store.get_customer_for_user(_db_path(), user_id)
    return jsonify({"authenticated": True, "user": user, "customer": customer.to_dict() if customer else None})


@app.route("/api/auth/register", methods=["POST"])
def api_auth_register():
    data = request.get_json(silent=True) or {}
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", "")).strip()
    display_name = str(data.get("display_name", "")).strip() or email.split("@")[0]
    sex = _parse_sex(data.get("sex", data.get("gender")))
    if sex is None:
        return jsonify({"error": "Sex must be male or female"}), 400
    weight_lb = _parse_weight_lb(data.get("default_weight_lb"))
    if weight_lb is None:
        return jsonify({"error": "Weight must be between 80 and 400 lb"}), 400
    phone, phone_error = _parse_phone(data.get("emergency_phone"))
    if phone_error:
        return jsonify({"error": phone_error}), 400

    if "@" not in email or len(email) < 5:
        return jsonify({"error": "Valid email is required"}), 400
    if len(password) < 8:
        return jsonify({"error": "Password must be at least 8 characters"}), 400
    if len(display_name) > 40:
        return jsonify({"error": "Display name must be 40 characters or fewer"}), 400

    user = auth_store.create_user(
        _db_path(),
        email=email,
        password=password,
        display_name=display_name,
        sex=sex,
        default_weight_lb=weight_lb,
    )
    if user is None:
        return jsonify({"error": "Email already registered"}), 409

    customer = tab_store.upsert_customer(
        _db_path(),
        user_id=user["id"],
        name=display_name,
        weight_lb=weight_lb,
        sex=sex,
        emergency_phone=phone,
    )
    flask_session.permanent = True
    flask_session[AUTH_USER_KEY] = user["id"]
    return jsonify({
        "ok": True,
        "user": user,
        "customer": customer.to_dict(),
        "redirect": _safe_redirect(data.get("redirect")),
    })


@app.route("/api/auth/login", methods=["POST"])
def api_auth_login():
    data = request.get_json(silent=True) or {}
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", "")).strip()

    user = auth_store.authenticate_user(_db_path(), email=email, password=password)
    if user is None:
        return jsonify({"error": "Invalid credentials"}), 401

    flask_session.permanent = True
    flask_session[AUTH_USER_KEY] = user["id"]
    return jsonify({"ok": True, "user": user, "redirect": _safe_redirect(data.get("redirect"))})


@app.route("/api/auth/logout", methods=["POST"])
def api_auth_logout():
    flask_session.pop(AUTH_USER_KEY, None)
    return jsonify({"ok": True})


# ---- menu ----


@app.route("/api/menu")
def api_menu():
    return jsonify({"by_category": list_by_category(), "flat": list_all_flat()})


# ---- customer ----


@app.route("/api/customer/profile")
def api_customer_profile():
    if _require_user_id() is None:
        return _auth_required_error()
    customer = _current_customer()
    return jsonify({"customer": customer.to_dict() if customer else None})


@app.route("/api/customer/profile", methods=["POST"])
def api_customer_profile_update():
    user_id = _require_user_id()
    if user_id is None:
        return _auth_required_error()
    data = request.get_json(silent=True) or {}
    name = str(data.get("name", "")).strip()
    if not name or len(name) > 40:
        return jsonify({"error": "Name is required (40 characters or fewer)"}), 400
    weight_lb = _parse_weight_lb(data.get("weight_lb"))
    if weight_lb is None:
        return jsonify({"error": "Weight must be between 80 and 400 lb"}), 400
    sex = _parse_sex(data.get("sex"))
    if sex is None:
        return jsonify({"error": "Sex must be male or female"}), 400
    phone, phone_error = _parse_phone(data.get("emergency_phone"))
    if phone_error:
        return jsonify({"error": phone_error}), 400

    customer = tab_store.upsert_customer(
        _db_path(),
        user_id=user_id,
        name=name,
        weight_lb=weight_lb,
        sex=sex,
        emergency_phone=phone,
    )
    return jsonify({"ok": True, "customer": customer.to_dict()})


@app.route("/customer/join/<token>")
def customer_join(token: str):
    if _require_user_id() is None:
        return _sign_up_redirect()
    session, error = _join(token)
    if session is None:
        return jsonify({"error": error, "status": "invalid"}), 404
    return redirect(f"/customer?joined={session.id}")


@app.route("/api/join/<token>", methods=["POST"])
def api_join(token: str):
    if _require_user_id() is None:
        return _auth_required_error()
    session, error = _join(token)
    if session is None:
        return jsonify({"error": error}), 404
    return jsonify({"ok": True, "session": _session_view(session, _current_customer())})


@app.route("/customer")
def customer_home():
    if _require_user_id() is None:
        return _sign_up_redirect()
    return api_customer_session()


@app.route("/api/customer/session")
def api_customer_session():
    if _require_user_id() is None:
        return _auth_required_error()
    customer = _current_customer()
    if customer is None:
        return jsonify({"session": None})

    # taken before the session read; clients poll /api/changes from here
    cursor = realtime.latest_seq(_db_path())
    session = None
    joined = request.args.get("joined", type=int)
    if joined is not None:
        candidate = tab_store.get_session(_db_path(), joined)
        if candidate is not None and candidate.customer_id == customer.id:
            session = candidate
    if session is None:
        session = tab_store.active_session_for_customer(_db_path(), customer.id)
    if session is None:
        return jsonify({"session": None})
    return jsonify({"session": _session_view(session, customer), "cursor": cursor})


@app.route("/api/sessions/<int:session_id>")
def api_session_detail(session_id: int):
    cursor = realtime.latest_seq(_db_path())
    session, customer, error = _owned_session(session_id)
    if error is not None:
        return error
    return jsonify({"session": _session_view(session, customer), "cursor": cursor})


@app.route("/api/sessions/<int:session_id>/chat", methods=["POST"])
def api_session_chat(session_id: int):
    if _require_user_id() is None:
        return _auth_required_error()
    customer = _current_customer()
    session = tab_store.get_session(_db_path(), session_id)
    if customer is None or session is None or session.customer_id != customer.id:
        return jsonify({"error": "Session not found"}), 404

    data = request.get_json(silent=True) or {}
    messages, error = breathy.validate_messages(data.get("messages"))
    if error:
        return jsonify({"error": error}), 400
    turn_raw = data.get("turn_id")
    turn_id = None
    if turn_raw is not None:
        try:
            turn_id = int(turn_raw)
        except (TypeError, ValueError):
            return jsonify({"error": "turn_id must be an integer"}), 400
        if turn_id < 1:
            return jsonify({"error": "turn_id must be positive"}), 400

    turn_id = tab_store.begin_chat_turn(_db_path(), session_id, turn_id)
    ctx = build_context(customer, session, now=utcnow())
    reply, source = breathy.get_reply(
        messages,
        ctx,
        api_key=config.openai_api_key(),
        model=config.breathy_model(),
        timeout=config.breathy_timeout(),
    )
    latest = tab_store.current_chat_turn(_db_path(), session_id)
    return jsonify({
        "reply": reply,
        "source": source,
        "turn_id": turn_id,
        "stale": latest > turn_id,
        "context": ctx.to_dict(),
    })


@app.route("/api/sessions/<int:session_id>/close", methods=["POST"])
def api_session_close(session_id: int):
    if _require_user_id() is None:
        return _auth_required_error()
    customer = _current_customer()
    session = tab_store.get_session(_db_path(), session_id)
    if customer is None or session is None or session.customer_id != customer.id:
        return jsonify({"error": "Session not found"}), 404
    if session.status == STATUS_ACTIVE and session.chat_turn == 0:
        return jsonify({"error": "Chat with Breathy before closing your tab"}), 409

    ended = tab_store.end_session(_db_path(), session_id=session_id)
    alert_store.create_session_ended_alert(_db_path(), session=ended, customer=customer)
    return jsonify({"ok": True, "session": ended.to_dict()})


# ---- bartender ----


@app.route("/api/sessions", methods=["POST"])
def api_sessions_create():
    if not _staff_allowed():
        return _staff_required_error()
    session = tab_store.create_pending_session(_db_path())
    base = config.public_base_url() or request.host_url.rstrip("/")
    return jsonify({
        "ok": True,
        "session": session.to_dict(),
        "join_path": join_path(session.join_token),
        "join_url": join_url(base, session.join_token),
    })


@app.route("/api/sessions/active")
def api_sessions_active():
    if not _staff_allowed():
        return _staff_required_error()
    items = [_session_view(session, customer) for session, customer in tab_store.list_active_sessions(_db_path())]
    return jsonify({"items": items})


@app.route("/api/sessions/<int:session_id>/drinks", methods=["POST"])
def api_session_add_drink(session_id: int):
    if not _staff_allowed():
        return _staff_required_error()
    data = request.get_json(silent=True) or {}

    menu_id = data.get("menu_id")
    if menu_id:
        item = get_item(str(menu_id))
        if item is None:
            return jsonify({"error": "Unknown menu item"}), 400
        name, volume_ml, abv = item.name, item.volume_ml, item.abv
    else:
        name = str(data.get("name", "")).strip()
        try:
            volume_ml = float(data.get("volume_ml"))
            abv = float(data.get("abv"))
        except (TypeError, ValueError):
            return jsonify({"error": "volume_ml and abv are required"}), 400
        if not name or len(name) > MAX_DRINK_NAME:
            return jsonify({"error": "Drink name is required (60 characters or fewer)"}), 400
        if volume_ml <= 0 or volume_ml > MAX_DRINK_ML:
            return jsonify({"error": "volume_ml must be between 0 and 2000"}), 400
        if abv < 0 or abv > 100:
            return jsonify({"error": "abv must be between 0 and 100"}), 400

    drink, error = tab_store.add_drink(_db_path(), session_id=session_id, name=name, volume_ml=volume_ml, abv=abv)
    if drink is None:
        status = 404 if error == "Session not found" else 409
        return jsonify({"error": error}), status

    session = tab_store.get_session(_db_path(), session_id)
    customer = tab_store.get_customer(_db_path(), session.customer_id)
    return jsonify({"ok": True, "drink": drink.to_dict(), "session": _session_view(session, customer)})


@app.route("/api/sessions/<int:session_id>/end", methods=["POST"])
def api_session_end(session_id: int):
    if not _staff_allowed():
        return _staff_required_error()
    ended = tab_store.end_session(_db_path(), session_id=session_id)
    if ended is None:
        return jsonify({"error": "Session not found"}), 404
    if ended.customer_id is not None:
        customer = tab_store.get_customer(_db_path(), ended.customer_id)
        if customer is not None:
            alert_store.create_session_ended_alert(_db_path(), session=ended, customer=customer)
    return jsonify({"ok": True, "session": ended.to_dict()})


# ---- alerts ----


@app.route("/api/sms", methods=["POST"])
def api_sms():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Missing required fields"}), 400
    error = validate_alert(data)
    if error:
        return jsonify({"error": error}), 400
    alert = alert_store.create_alert(
        _db_path(),
        contact=data["to"],
        kind=data["type"],
        customer_name=data["customerName"],
        bac=data.get("bac"),
    )
    return jsonify({"sent": True, "alert": alert.to_dict()})


@app.route("/api/friend/messages")
def api_friend_messages():
    contact = request.args.get("contact", "", type=str).strip()
    if not contact:
        return jsonify({"error": "contact is required"}), 400

    for customer in tab_store.list_customers_by_contact(_db_path(), contact):
        session = tab_store.active_session_for_customer(_db_path(), customer.id)
        if session is not None:
            _check_high_risk(session, customer, session.bac_now(customer, now=utcnow()))

    alerts = alert_store.list_alerts_for_contact(_db_path(), contact)
    contact_name = alerts[-1].customer_name.split()[0] if alerts else "SOBR"
    return jsonify({"contact_name": contact_name, "items": [a.to_dict() for a in alerts]})


# ---- change feed ----


@app.route("/api/changes")
def api_changes():
    if _require_user_id() is None and not _staff_allowed():
        return _staff_required_error()
    since = request.args.get("since", 0, type=int)
    session_id = request.args.get("session_id", type=int)
    items = realtime.list_changes(_db_path(), since=max(0, since), session_id=session_id)
    cursor = items[-1]["seq"] if items else max(0, since)
    return jsonify({"items": items, "cursor": cursor})


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "0") == "1")
