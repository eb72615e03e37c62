import logging
import os
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from pymongo.errors import ConnectionFailure, PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import customers
import users
from auth import client_ip, get_current_user, require_admin, require_super_admin
from config import Settings, configure_logging, get_settings
from database import Database, get_db, serialize_doc
from errors import InvalidRequest, NotFound
from schemas import Customer, Material, Project, ProjectStatus
from security import create_access_token, verify_password

logger = logging.getLogger("handyman")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PENDING_MSG = ("Registration successful! Your account is pending admin approval. "
               "You will be notified when approved.")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    settings.check_required()
    try:
        await run_in_threadpool(app.state.database.get)
    except ConnectionFailure as exc:
        # Requests retry the connection and answer 503 until it succeeds.
        logger.error("MongoDB connection error: %s", exc)
    yield
    app.state.database.close()


app = FastAPI(title="Handyman Tracker API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.database = Database(
    settings.database_url,
    settings.database_name,
    timeout_ms=settings.db_connect_timeout_ms,
)


# ===================== Error mapping =====================
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    body = exc.detail if isinstance(exc.detail, dict) else {"msg": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors and errors[0].get("type") == "json_invalid":
        return JSONResponse({"msg": "Invalid JSON body"}, status_code=400)
    loc = [str(p) for p in errors[0].get("loc", ()) if p != "body"] if errors else []
    field = ".".join(loc) or "request body"
    return JSONResponse({"msg": f"Invalid or missing field: {field}"}, status_code=400)


@app.exception_handler(InvalidRequest)
async def invalid_request(request: Request, exc: InvalidRequest):
    return JSONResponse({"msg": str(exc)}, status_code=400)


@app.exception_handler(NotFound)
async def not_found(request: Request, exc: NotFound):
    return JSONResponse({"msg": str(exc)}, status_code=404)


@app.exception_handler(ConnectionFailure)
async def database_unavailable(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failed: %s", exc)
    return JSONResponse({"msg": "Database connection error. Please try again."}, status_code=503)


@app.exception_handler(PyMongoError)
async def database_error(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"msg": "Server error", "error": str(exc)}, status_code=500)


@app.exception_handler(Exception)
async def server_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"msg": "Server error", "error": str(exc)}, status_code=500)


# ===================== Request models =====================
class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(Payload):
    username: Optional[str] = None
    password: Optional[str] = None
    email: Optional[str] = None


class LoginRequest(Payload):
    username: Optional[str] = None
    password: Optional[str] = None


class CustomerBidRequest(Payload):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    project_name: Optional[str] = None
    project_description: Optional[str] = None


class ApproveRequest(Payload):
    role: Optional[str] = None


class MaterialCreate(Payload):
    item: Optional[str] = None
    quantity: Optional[float] = None
    cost: Optional[float] = None


class ProjectCreate(Payload):
    name: Optional[str] = None
    description: Optional[str] = None
    bid_amount: Optional[float] = None
    bill_amount: Optional[float] = None
    status: Optional[ProjectStatus] = None
    schedule_date: Optional[datetime] = None
    materials: List[MaterialCreate] = []

    def to_project(self) -> Project:
        return Project(**self.model_dump(exclude_none=True))


class CustomerCreate(Payload):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    projects: List[ProjectCreate] = []


class CustomerUpdate(Payload):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class BidRequest(Payload):
    bid_amount: float


class BillRequest(Payload):
    bill_amount: float


class ScheduleRequest(Payload):
    schedule_date: datetime


def _user_summary(user: Dict[str, Any], *fields: str) -> Dict[str, Any]:
    out = {"id": str(user["_id"])}
    for f in fields:
        out[f] = user.get(f)
    return out


# ===================== Public Endpoints =====================
@app.get("/")
def root():
    return {"message": "Handyman Tracker API running"}


@app.get("/test")
def test_database(request: Request):
    database: Database = request.app.state.database
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if database.url else "❌ Not Set",
        "database_name": database.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = database.get()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
        response["collections"] = db.list_collection_names()[:10]
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ===================== Auth =====================
@app.post("/api/register", status_code=201)
def register(payload: RegisterRequest, request: Request, db=Depends(get_db)):
    ip = client_ip(request)
    username, password, email = payload.username, payload.password, payload.email

    if not username or not password or not email:
        logger.info("REGISTRATION FAILED - Missing credentials - IP: %s", ip)
        raise HTTPException(status_code=400, detail="Username, password, and email are required")
    if len(username) < 3:
        logger.info('REGISTRATION FAILED - Username too short: "%s" - IP: %s', username, ip)
        raise HTTPException(status_code=400, detail="Username must be at least 3 characters")
    if len(password) < 6:
        logger.info('REGISTRATION FAILED - Password too short for user: "%s" - IP: %s', username, ip)
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters")
    if not EMAIL_RE.match(email):
        logger.info('REGISTRATION FAILED - Invalid email: "%s" - IP: %s', email, ip)
        raise HTTPException(status_code=400, detail="Invalid email format")

    try:
        user = users.register_user(db, username=username, email=email, password=password)
    except InvalidRequest:
        logger.info('REGISTRATION FAILED - Username or email already exists: "%s" - IP: %s', username, ip)
        raise

    logger.info(
        'REGISTRATION SUCCESS - New user: "%s" (%s/%s) - IP: %s',
        username, user["role"], user["status"], ip,
    )
    if user["role"] == "super-admin":
        return {"msg": "First user created successfully as super-admin. You can now login.", "role": "super-admin"}
    return {"msg": PENDING_MSG, "status": "pending"}


@app.post("/api/login")
def login(payload: LoginRequest, request: Request, db=Depends(get_db),
          cfg: Settings = Depends(get_settings)):
    ip = client_ip(request)
    if not payload.username or not payload.password:
        logger.info("LOGIN FAILED - Missing credentials - IP: %s", ip)
        raise HTTPException(status_code=400, detail="Username and password are required")

    user = users.find_by_username(db, payload.username)
    if user is None:
        logger.info('LOGIN FAILED - User not found: "%s" - IP: %s', payload.username, ip)
        raise HTTPException(status_code=400, detail="Invalid credentials")
    if not verify_password(payload.password, user.get("password", "")):
        logger.info('LOGIN FAILED - Invalid password for user: "%s" - IP: %s', payload.username, ip)
        raise HTTPException(status_code=400, detail="Invalid credentials")

    if user.get("status") == "pending":
        logger.info('LOGIN FAILED - User pending approval: "%s" - IP: %s', payload.username, ip)
        raise HTTPException(status_code=403, detail={
            "msg": "Your account is pending admin approval. Please wait for an administrator to approve your account.",
            "status": "pending",
        })
    if user.get("status") != "approved":
        logger.info('LOGIN FAILED - User rejected: "%s" - IP: %s', payload.username, ip)
        raise HTTPException(status_code=403, detail={
            "msg": "Your account has been rejected. Please contact an administrator.",
            "status": user.get("status"),
        })

    token = create_access_token(str(user["_id"]), cfg.jwt_secret, cfg.token_expire_seconds)
    logger.info('LOGIN SUCCESS - User: "%s" (%s) - IP: %s', user["username"], user.get("role"), ip)
    return {"token": token, "user": _user_summary(user, "username", "email", "role")}


# ===================== Public bid intake =====================
@app.post("/api/customer-bid", status_code=201)
def customer_bid(payload: CustomerBidRequest, response: Response, db=Depends(get_db)):
    if not payload.name or not payload.email or not payload.phone:
        raise HTTPException(status_code=400, detail="Name, email, and phone are required")
    if not payload.project_name or not payload.project_description:
        raise HTTPException(status_code=400, detail="Project name and description are required")
    if not EMAIL_RE.match(payload.email):
        raise HTTPException(status_code=400, detail="Invalid email format")

    customer, created = customers.submit_bid(
        db,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        address=payload.address,
        project_name=payload.project_name,
        project_description=payload.project_description,
    )
    summary = {"name": customer.get("name"), "email": customer.get("email")}
    if created:
        return {"msg": "Bid request submitted successfully! We will contact you soon.", "customer": summary}
    response.status_code = 200
    return {
        "msg": ("Bid request submitted successfully! We found your existing account "
                "and added this project to it."),
        "customer": summary,
    }


# ===================== Admin: users =====================
@app.get("/api/admin/users")
def admin_list_users(admin=Depends(require_admin), db=Depends(get_db)):
    return serialize_doc(users.list_users(db))


@app.get("/api/admin/users/pending")
def admin_list_pending(admin=Depends(require_admin), db=Depends(get_db)):
    return serialize_doc(users.list_pending(db))


@app.put("/api/admin/users/{user_id}/approve")
def admin_approve(user_id: str, payload: Optional[ApproveRequest] = None,
                  admin=Depends(require_admin), db=Depends(get_db)):
    if payload is not None and payload.role and payload.role != "admin":
        raise HTTPException(status_code=400, detail='Invalid role. Must be "admin" if provided.')
    user = users.approve_user(db, user_id, approver_id=admin["id"])
    logger.info("User approved: %s by %s", user["username"], admin["username"])
    return {
        "msg": f"User {user['username']} has been approved as {user['role']}",
        "user": _user_summary(user, "username", "email", "role", "status"),
    }


@app.put("/api/admin/users/{user_id}/reject")
def admin_reject(user_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    user = users.reject_user(db, user_id)
    logger.info("User rejected: %s by %s", user["username"], admin["username"])
    return {
        "msg": f"User {user['username']} has been rejected",
        "user": _user_summary(user, "username", "email", "status"),
    }


@app.put("/api/admin/users/{user_id}/promote")
def admin_promote(user_id: str, admin=Depends(require_super_admin), db=Depends(get_db)):
    user = users.promote_user(db, user_id)
    logger.info("User promoted: %s by %s", user["username"], admin["username"])
    return {
        "msg": f"User {user['username']} has been promoted to super-admin",
        "user": _user_summary(user, "username", "email", "role"),
    }


@app.delete("/api/admin/users/{user_id}")
def admin_delete(user_id: str, admin=Depends(require_super_admin), db=Depends(get_db)):
    user = users.delete_user(db, user_id, actor_id=admin["id"])
    logger.info("User deleted: %s by %s", user["username"], admin["username"])
    return {"msg": f"User {user['username']} has been deleted"}


# ===================== Customers =====================
@app.get("/api/customers")
def list_customers(user=Depends(get_current_user), db=Depends(get_db)):
    return serialize_doc(customers.list_customers(db))


@app.get("/api/customers/{customer_id}")
def get_customer(customer_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return serialize_doc(customers.get_customer(db, customer_id))


@app.post("/api/customers")
def create_customer(payload: CustomerCreate, user=Depends(get_current_user), db=Depends(get_db)):
    customer = Customer(
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        address=payload.address or "",
        projects=[p.to_project() for p in payload.projects],
    )
    return serialize_doc(customers.create_customer(db, customer))


@app.put("/api/customers/{customer_id}")
def update_customer(customer_id: str, payload: CustomerUpdate,
                    user=Depends(get_current_user), db=Depends(get_db)):
    return serialize_doc(customers.update_customer(db, customer_id, payload.model_dump()))


@app.delete("/api/customers/{customer_id}")
def delete_customer(customer_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    customers.delete_customer(db, customer_id)
    return {"msg": "Customer deleted"}


# ===================== Projects =====================
@app.post("/api/customers/{customer_id}/projects")
def add_project(customer_id: str, payload: ProjectCreate,
                user=Depends(get_current_user), db=Depends(get_db)):
    return serialize_doc(customers.add_project(db, customer_id, payload.to_project()))


@app.delete("/api/customers/{customer_id}/projects/{project_id}")
def remove_project(customer_id: str, project_id: str,
                   user=Depends(get_current_user), db=Depends(get_db)):
    customers.remove_project(db, customer_id, project_id)
    return {"msg": "Project deleted"}


@app.put("/api/customers/{customer_id}/projects/{project_id}/bid")
def bid_project(customer_id: str, project_id: str, payload: BidRequest,
                user=Depends(get_current_user), db=Depends(get_db)):
    project = customers.update_project(
        db, customer_id, project_id, {"bidAmount": payload.bid_amount, "status": "Bidded"}
    )
    return serialize_doc(project)


@app.put("/api/customers/{customer_id}/projects/{project_id}/bill")
def bill_project(customer_id: str, project_id: str, payload: BillRequest,
                 user=Depends(get_current_user), db=Depends(get_db)):
    project = customers.update_project(
        db, customer_id, project_id, {"billAmount": payload.bill_amount, "status": "Billed"}
    )
    return serialize_doc(project)


@app.put("/api/customers/{customer_id}/projects/{project_id}/schedule")
def schedule_project(customer_id: str, project_id: str, payload: ScheduleRequest,
                     user=Depends(get_current_user), db=Depends(get_db)):
    project = customers.update_project(
        db, customer_id, project_id, {"scheduleDate": payload.schedule_date, "status": "Scheduled"}
    )
    return serialize_doc(project)


@app.put("/api/customers/{customer_id}/projects/{project_id}/complete")
def complete_project(customer_id: str, project_id: str,
                     user=Depends(get_current_user), db=Depends(get_db)):
    project = customers.update_project(db, customer_id, project_id, {"status": "Completed"})
    logger.info("Project marked as completed: %s", project.get("name"))
    return serialize_doc(project)


# ===================== Materials =====================
@app.post("/api/customers/{customer_id}/projects/{project_id}/materials")
def add_material(customer_id: str, project_id: str, payload: MaterialCreate,
                 user=Depends(get_current_user), db=Depends(get_db)):
    material = Material(**payload.model_dump())
    return serialize_doc(customers.add_material(db, customer_id, project_id, material))


@app.delete("/api/customers/{customer_id}/projects/{project_id}/materials/{material_id}")
def remove_material(customer_id: str, project_id: str, material_id: str,
                    user=Depends(get_current_user), db=Depends(get_db)):
    materials = customers.remove_material(db, customer_id, project_id, material_id)
    return {"msg": "Material deleted", "materials": serialize_doc(materials)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
