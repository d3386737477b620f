# =====================================================================
# SECTION START: IMPORTS
# =====================================================================

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import LOG_LEVEL, validate_settings
from db import init_db
from errors import BookingError
from routers.admin import router as admin_router
from routers.alerts import router as alerts_router
from routers.bookings import router as bookings_router
from routers.common import status_for
from routers.notifications import router as notifications_router
from routers.payments import router as payments_router
from routers.users import router as users_router
from routers.webhooks import router as webhooks_router

# =====================================================================
# SECTION END: IMPORTS
# =====================================================================


# =====================================================================
# SECTION START: LOGGING
# =====================================================================

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

# =====================================================================
# SECTION END: LOGGING
# =====================================================================


# =====================================================================
# SECTION START: APP
# =====================================================================

app = FastAPI(title="TrueDest backend")


@app.on_event("startup")
def on_startup():
    # Missing secrets stop the process here, not on the first webhook
    validate_settings()
    init_db()
    logger.info("[startup] settings validated, tables ready")


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=status_for(exc), content={"detail": exc.to_detail()})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin_router)
app.include_router(users_router)
app.include_router(bookings_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(alerts_router)
app.include_router(notifications_router)

# =====================================================================
# SECTION END: APP
# =====================================================================
