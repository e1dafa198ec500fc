"""Mock policy backend implementing the session, package and application endpoints"""

import copy
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel

from policy_portal.config import settings
from policy_portal.infrastructure.observability.logging import setup_logging

USERS = {
    "ivan@example.com": {
        "password": "secret",
        "firstName": "Ivan",
        "lastName": "Petrov",
        "role": "USER",
        "level": "BRONZE",
        "policyCount": 5,
    },
}

PACKAGES = [
    {
        # Applications embedded in the summary
        "id": 1,
        "name": "Auto complete",
        "description": "KASKO and OSAGO together",
        "basePrice": 30000,
        "discount": 10,
        "status": "PENDING",
        "createdAt": "2025-03-01T10:00:00",
        "applications": [
            {"id": 101, "applicationType": "KASKO", "status": "PENDING", "calculatedAmount": 25000},
            {"id": 102, "type": "OSAGO", "status": "PENDING", "amount": "5000.50"},
        ],
    },
    {
        # Summary carries nothing; detail uses a non-default field name
        "id": 2,
        "name": "Traveller",
        "description": "Travel and health",
        "basePrice": 8000,
        "discount": 15,
        "status": "PARTIALLY_COMPLETED",
        "createdAt": "2025-03-02T10:00:00",
        "applications": [],
    },
    {
        # Detail endpoint fails for this one
        "id": 3,
        "name": "Home",
        "description": "Apartment cover",
        "basePrice": 12000,
        "discount": 5,
        "status": "PENDING",
        "createdAt": "2025-03-03T10:00:00",
    },
]

PACKAGE_DETAILS = {
    2: {
        "id": 2,
        "name": "Traveller",
        "packageApplications": [
            {"id": 201, "displayName": "TRAVEL: Turkey", "status": "PENDING", "price": 3000},
            {"id": 401, "hasChronicDiseases": False, "snils": "123-456-789 00", "status": "PENDING", "totalAmount": 4500},
        ],
    },
}

APPLICATIONS = {
    "kasko": [
        {"id": 101, "status": "PENDING", "calculatedAmount": 25000, "carMake": "Toyota"},
        {"id": 105, "status": "APPROVED", "calculatedAmount": 18000, "carMake": "Lada"},
    ],
    "osago": [
        {"id": 102, "status": "PENDING", "calculatedAmount": 5000.5},
    ],
    "travel": [
        {"id": 201, "status": "PENDING", "calculatedAmount": 3000},
        {"id": 202, "status": "PENDING", "calculatedAmount": 2500, "destinationCountry": "Georgia"},
    ],
    "health": [
        {"id": 301, "status": "REJECTED", "calculatedAmount": 9000},
        {"id": 401, "status": "PENDING", "calculatedAmount": 4500},
    ],
}

FAILING_DETAILS = {3}
FAILING_CATEGORIES = {"property"}


class BackendState:
    """In-memory users, tokens and insurance data"""

    def __init__(self) -> None:
        self.users = copy.deepcopy(USERS)
        self.packages = copy.deepcopy(PACKAGES)
        self.details = copy.deepcopy(PACKAGE_DETAILS)
        self.applications = copy.deepcopy(APPLICATIONS)
        self.failing_details = set(FAILING_DETAILS)
        self.failing_categories = set(FAILING_CATEGORIES)
        self.access_tokens: Dict[str, str] = {}
        self.refresh_tokens: Dict[str, str] = {}
        self.refresh_calls = 0
        self.reject_refresh = False

    def issue(self, email: str) -> Dict[str, Any]:
        access_token = uuid.uuid4().hex
        refresh_token = uuid.uuid4().hex
        self.access_tokens[access_token] = email
        self.refresh_tokens[refresh_token] = email
        user = self.users[email]
        return {
            "accessToken": access_token,
            "refreshToken": refresh_token,
            "email": email,
            "firstName": user["firstName"],
            "lastName": user["lastName"],
            "role": user["role"],
            "level": user["level"],
            "policyCount": user["policyCount"],
        }

    def expire_access_tokens(self) -> None:
        self.access_tokens.clear()


class LoginBody(BaseModel):
    email: str
    password: str


class RegisterBody(BaseModel):
    email: str
    password: str
    firstName: str = ""
    lastName: str = ""


class RefreshBody(BaseModel):
    email: str
    refreshToken: str


def create_app(state: Optional[BackendState] = None) -> FastAPI:
    """Create the mock backend around a state object tests can inspect"""
    state = state or BackendState()
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Only when served; in-process transports skip lifespan events
        setup_logging(settings.log_level)
        yield

    app = FastAPI(title="Mock Policy Backend", version="1.0.0", lifespan=lifespan)
    app.state.backend = state

    def current_user(authorization: Optional[str] = Header(None)) -> str:
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="missing token")
        email = state.access_tokens.get(authorization.removeprefix("Bearer "))
        if email is None:
            raise HTTPException(status_code=401, detail="token expired")
        return email

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/session/login")
    def login(body: LoginBody):
        user = state.users.get(body.email)
        if user is None or user["password"] != body.password:
            raise HTTPException(status_code=401, detail="bad credentials")
        return state.issue(body.email)

    @app.post("/session/register")
    def register(body: RegisterBody):
        if body.email in state.users:
            raise HTTPException(status_code=409, detail="user exists")
        state.users[body.email] = {
            "password": body.password,
            "firstName": body.firstName,
            "lastName": body.lastName,
            "role": "USER",
            "level": "WOODEN",
            "policyCount": 0,
        }
        return state.issue(body.email)

    @app.post("/session/refresh")
    def refresh(body: RefreshBody):
        state.refresh_calls += 1
        email = state.refresh_tokens.pop(body.refreshToken, None)
        if state.reject_refresh or email is None or email != body.email:
            raise HTTPException(status_code=400, detail="invalid refresh token")
        return state.issue(email)

    @app.post("/session/logout")
    def logout(email: str = Depends(current_user)):
        for token, owner in list(state.access_tokens.items()):
            if owner == email:
                del state.access_tokens[token]
        return {"status": "ok"}

    @app.get("/packages/summary-list")
    def package_summaries(email: str = Depends(current_user)):
        return state.packages

    def find_package(package_id: int) -> Dict[str, Any]:
        for package in state.packages:
            if package["id"] == package_id:
                return package
        raise HTTPException(status_code=404, detail="package not found")

    @app.get("/packages/{package_id}")
    def package_detail(package_id: int, email: str = Depends(current_user)):
        if package_id in state.failing_details:
            raise HTTPException(status_code=500, detail="detail unavailable")
        if package_id in state.details:
            return state.details[package_id]
        return find_package(package_id)

    @app.post("/packages/{package_id}/pay")
    def pay_package(package_id: int, email: str = Depends(current_user)):
        package = find_package(package_id)
        package["status"] = "ACTIVE"
        return {"id": package_id, "status": "ACTIVE"}

    @app.post("/packages/{package_id}/cancel")
    def cancel_package(package_id: int, email: str = Depends(current_user)):
        package = find_package(package_id)
        package["status"] = "CANCELLED"
        return {"id": package_id, "status": "CANCELLED"}

    @app.get("/applications/{category}")
    def applications(category: str, email: str = Depends(current_user)):
        if category in state.failing_categories:
            raise HTTPException(status_code=503, detail="category unavailable")
        return state.applications.get(category, [])

    @app.post("/applications/{category}/{application_id}/pay")
    def pay_application(category: str, application_id: int, email: str = Depends(current_user)):
        for application in state.applications.get(category, []):
            if application["id"] == application_id:
                application["status"] = "PAID"
                return {"id": application_id, "status": "PAID"}
        raise HTTPException(status_code=404, detail="application not found")

    return app


app = create_app()
