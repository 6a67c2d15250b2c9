from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from errors import ServiceError
from routes.auth_routes import router as auth_router
from routes.banking_routes import router as banking_router
from routes.pin_routes import router as pin_router
from routes.admin_routes import router as admin_router
from routes.webhook_routes import router as webhook_router
import logging

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="DigiWallet VTU")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logging.error(f"{request.url.path}: {exc.code} - {exc} {exc.details}")
    content = {"detail": exc.user_message, "code": exc.code}
    if exc.code == "account_locked":
        content["locked_until"] = exc.details.get("locked_until")
    if "remaining_attempts" in exc.details:
        content["remaining_attempts"] = exc.details["remaining_attempts"]
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 and exc.code == "unauthenticated" else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
app.include_router(banking_router, prefix="/banking", tags=["Banking"])
app.include_router(pin_router, prefix="/pin", tags=["Transaction PIN"])
app.include_router(admin_router, prefix="/admin", tags=["Admin"])
app.include_router(webhook_router, prefix="/webhooks", tags=["Webhooks"])
