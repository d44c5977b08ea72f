"""Test doubles: an in-memory backend-as-a-service and a settings builder."""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

import httpx

from rollcall.core.config import Settings


REMOTE_URL = "https://project.example.co"
ANON_KEY = "anon-test-key"
GENERIC_HOST = "www.google.com"

UNIQUE_KEYS = {
    "teachers": ("email",),
    "attendance": ("student_id", "date"),
}


class FakeRemote:
    """
    In-memory stand-in for the backend-as-a-service, served through httpx.MockTransport.

    Supports the subset of the REST filter syntax and auth endpoints the remote store uses.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {"teachers": [], "classes": [], "students": [], "attendance": []}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, str] = {}
        self.requests: List[httpx.Request] = []
        # Failure switches
        self.down = False
        self.internet_down = False
        self.delay: float = 0.0
        self.server_error = False
        self.confirm_email = False
        self.reject_tables: Set[str] = set()
        # Inserts into these tables require a signed-in user's bearer token
        self.owner_tables: Set[str] = set()

    # ----- helpers for tests -----
    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables[table]

    def request_count(self, prefix: str) -> int:
        return sum(1 for r in self.requests if r.url.path.startswith(prefix))

    # ----- transport -----
    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == GENERIC_HOST:
            if self.internet_down:
                raise httpx.ConnectError("internet down", request=request)
            return httpx.Response(200, text="ok")
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.server_error:
            return httpx.Response(503, json={"message": "service paused"})
        if request.headers.get("apikey") != ANON_KEY:
            return httpx.Response(401, json={"message": "Invalid API key"})

        path = request.url.path
        if path.startswith("/auth/v1/"):
            return self._auth(request, path[len("/auth/v1/"):])
        if path.rstrip("/") == "/rest/v1":
            return httpx.Response(200, json={"swagger": "2.0"})
        if path.startswith("/rest/v1/"):
            return self._table(request, path[len("/rest/v1/"):])
        return httpx.Response(404, json={"message": "no route"})

    def _body(self, request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    def _matches(self, row: Dict[str, Any], filters: List[tuple]) -> bool:
        for column, expression in filters:
            op, _, value = expression.partition(".")
            actual = str(row.get(column))
            if op == "eq" and actual != value:
                return False
            if op == "in" and actual not in value.strip("()").split(","):
                return False
            if op == "gte" and actual < value:
                return False
            if op == "lte" and actual > value:
                return False
        return True

    def _table(self, request: httpx.Request, table: str) -> httpx.Response:
        if table not in self.tables:
            return httpx.Response(404, json={"code": "42P01", "message": f'relation "{table}" does not exist'})
        rows = self.tables[table]
        filters = []
        order: Optional[str] = None
        for key, value in request.url.params.multi_items():
            if key == "select":
                continue
            if key == "order":
                order = value
            else:
                filters.append((key, value))

        if request.method == "GET":
            found = [dict(r) for r in rows if self._matches(r, filters)]
            if order:
                column, _, direction = order.partition(".")
                found.sort(key=lambda r: str(r[column]), reverse=direction == "desc")
            return httpx.Response(200, json=found)

        if request.method == "POST":
            if table in self.reject_tables:
                return httpx.Response(400, json={"code": "42501", "message": "new row violates row-level security policy"})
            if table in self.owner_tables and self._user_for(request) is None:
                return httpx.Response(403, json={"code": "42501", "message": "new row violates row-level security policy"})
            created = []
            for payload in self._body(request):
                row = {"id": str(uuid4()), "created_at": datetime.now(timezone.utc).isoformat(), **payload}
                unique = UNIQUE_KEYS.get(table)
                if unique and any(all(str(r[c]) == str(row[c]) for c in unique) for r in rows):
                    return httpx.Response(
                        409,
                        json={"code": "23505", "message": f"duplicate key value violates unique constraint on {table}"},
                    )
                rows.append(row)
                created.append(dict(row))
            return httpx.Response(201, json=created)

        if request.method == "PATCH":
            changes = self._body(request)
            updated = []
            for row in rows:
                if self._matches(row, filters):
                    row.update(changes)
                    updated.append(dict(row))
            return httpx.Response(200, json=updated)

        if request.method == "DELETE":
            removed = [dict(r) for r in rows if self._matches(r, filters)]
            self.tables[table] = [r for r in rows if not self._matches(r, filters)]
            return httpx.Response(200, json=removed)

        return httpx.Response(405, json={"message": "method not allowed"})

    def _user_for(self, request: httpx.Request) -> Optional[Dict[str, Any]]:
        token = request.headers.get("Authorization", "").replace("Bearer ", "", 1)
        email = self.tokens.get(token)
        return self.users.get(email) if email else None

    def _session(self, user: Dict[str, Any]) -> Dict[str, Any]:
        token = f"token-{uuid4()}"
        self.tokens[token] = user["email"]
        return {
            "access_token": token,
            "refresh_token": f"refresh-{uuid4()}",
            "token_type": "bearer",
            "expires_in": 3600,
            "user": {"id": user["id"], "email": user["email"]},
        }

    def _auth(self, request: httpx.Request, endpoint: str) -> httpx.Response:
        body = self._body(request) or {}
        if endpoint == "signup" and request.method == "POST":
            email = body["email"].lower()
            if email in self.users:
                return httpx.Response(422, json={"code": "user_already_exists", "msg": "User already registered"})
            user = {"id": str(uuid4()), "email": email, "password": body["password"]}
            self.users[email] = user
            if self.confirm_email:
                return httpx.Response(200, json={"id": user["id"], "email": email})
            return httpx.Response(200, json=self._session(user))

        if endpoint == "token" and request.method == "POST":
            user = self.users.get(body.get("email", "").lower())
            if user is None or user["password"] != body.get("password"):
                return httpx.Response(
                    400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"}
                )
            return httpx.Response(200, json=self._session(user))

        if endpoint == "user":
            user = self._user_for(request)
            if user is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            if request.method == "PUT":
                user["password"] = body["password"]
            return httpx.Response(200, json={"id": user["id"], "email": user["email"]})

        if endpoint == "logout" and request.method == "POST":
            token = request.headers.get("Authorization", "").replace("Bearer ", "", 1)
            self.tokens.pop(token, None)
            return httpx.Response(204)

        return httpx.Response(404, json={"msg": "no route"})


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "remote_url": REMOTE_URL,
        "remote_anon_key": ANON_KEY,
        "local_jwt_secret_key": "test-secret-key",
        "reachability_timeout_seconds": 0.5,
        "diagnose_network_timeout_seconds": 0.5,
        "diagnose_remote_timeout_seconds": 0.5,
        "auth_check_retries": 1,
        "auth_retry_backoff_seconds": 0.01,
        "auth_soft_timeout_seconds": 2.0,
        "auth_hard_timeout_seconds": 4.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


