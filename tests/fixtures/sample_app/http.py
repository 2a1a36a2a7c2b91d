"""Small stand-ins for framework response helpers used by the sample controllers."""


class JSONResponse:
    def __init__(self, content=None, status_code=200, media_type="application/json"):
        self.content = content
        self.status_code = status_code
        self.media_type = media_type


class Responder:
    def json(self, data=None, status=200):
        return JSONResponse(data, status_code=status)

    def created(self, data=None):
        return JSONResponse(data, status_code=201)

    def no_content(self):
        return JSONResponse(None, status_code=204)


def response():
    return Responder()


def jsonify(*args, **kwargs):
    return JSONResponse(args[0] if args else kwargs)


class HTTPException(Exception):
    def __init__(self, status_code, detail=None):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def abort(code, message=None):
    raise HTTPException(code, message)


def validate(request, rules):
    return dict(request)


class Router:
    def _route(self, path, **options):
        def decorator(func):
            return func
        return decorator

    get = post = put = patch = delete = _route


router = Router()


def Query(default=None, **constraints):
    return default
