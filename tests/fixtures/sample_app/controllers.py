"""Sample handlers covering the response shapes the detector recognises."""

from typing import Annotated

from sample_app import status
from sample_app.dtos import CreateUser, UserOut
from sample_app.exceptions import NotFound, OrderLocked, UserMissing, ValidationError
from sample_app.forms import StoreUserRequest, UpdateUserRequest  # noqa: F401
from sample_app.http import HTTPException, JSONResponse, Query, abort, jsonify, response, router, validate
from sample_app.resources import UserResource

from api_schema_infer.annotations import documented_response, schema_field

ACCEPTED = 202


class UserController:
    LOCKED = 409

    def __init__(self, repository):
        self.repository = repository

    def index(self):
        return UserResource.collection(self.repository.all())

    def store(self, request):
        user = self.create(request)
        return response().json(UserResource(user), 201)

    def show(self, id):
        user = self.repository.find(id)
        if user is None:
            raise NotFound("User not found")
        return UserResource(user)

    def update(self, id, request):
        if not request:
            raise ValidationError.with_messages({"email": ["taken"]})
        return JSONResponse({"updated": True}, status_code=status.HTTP_200_OK)

    def destroy(self, id):
        if id == 1:
            abort(403, "Forbidden")
        return response().no_content()

    def archive(self, id):
        return JSONResponse({"queued": True}, status_code=ACCEPTED)

    def lock(self, id):
        raise OrderLocked()

    def missing(self, user_id):
        raise UserMissing()

    def conflict(self):
        raise HTTPException(status_code=self.LOCKED, detail="Already locked")

    def ping(self):
        pass

    def create(self, request):
        return JSONResponse({"helper": True}, status_code=418)


class AdminController:
    def store(self):
        return response().created({"admin": True})


def health():
    return {"status": "ok", "uptime": 1.5}


def legacy_create():
    data = jsonify(id=1, name="x")
    data.status_code = 201
    return data


def flask_style(user_id):
    return jsonify({"id": user_id}), status.HTTP_201_CREATED


@router.post("/users", status_code=201, response_model=UserOut)
def create_user(payload: CreateUser):
    return payload


def current_profile() -> UserOut:
    return UserOut.model_construct()


def validate_inline(request):
    data = validate(request, {"title": "required|string|max:100", "published": "boolean"})
    return {"ok": bool(data)}


@documented_response(200, "UserResource", description="The user")
@documented_response(410, schema={"kind": "object", "properties": {"reason": {"type": "string"}}})
@schema_field("id", type="integer", description="User identifier")
def documented(id: int):
    return {"id": 1, "extra": "yes"}


def search(request):
    term = request.args.get("q", "")
    page = request.args.get("page", 1, type=int)
    tags = request.args.getlist("tag")
    sort = request.query_params["sort"]
    again = request.args.get("q", type=int)
    return {"term": term, "page": page, "tags": tags, "sort": sort, "again": again}


def list_orders(request, repository):
    limit = request.integer("limit", 20)
    archived = request.boolean("archived")
    return {"data": repository.paginate(limit, archived=archived)}


def feed(request, repository):
    return {"items": repository.cursor_paginate(request.args.get("limit", type=int))}


def find_users(
    q: str | None = Query(None, max_length=50, description="Search text"),
    page: int = Query(1, ge=1),
    size: Annotated[int, Query(le=100, alias="per_page")] = 20,
    token: str = Query(...),
):
    return {"q": q, "page": page, "size": size, "token": token}
