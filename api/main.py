"""
FastAPI main application for the Book Catalog API.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import structlog
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import AccountService, TokenManager, get_current_user_id
from api.config import config as api_config
from api.models import (
    BookResponse, ErrorResponse, HealthResponse, LoginRequest, LoginResponse,
    MessageResponse, RatingRequest, SignupRequest
)
from catalog.database import MongoDBManager
from catalog.errors import CatalogError, InvalidInputError, PersistenceFailure
from catalog.models import BookCreate, BookUpdate, ImageUpload, parse_payload
from catalog.service import BookService
from catalog.storage import LocalImageStorage
from utilities.config import config
from utilities.logger import setup_logging

# Setup logging
logger = structlog.get_logger(__name__)

ERROR_KINDS = {
    status.HTTP_400_BAD_REQUEST: "invalid_input",
    status.HTTP_401_UNAUTHORIZED: "unauthenticated",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
}


def configure_services(app: FastAPI, store, storage) -> None:
    """
    Build the services around an opened store and attach them to the app.

    Args:
        app: FastAPI application
        store: Book and user store (MongoDBManager or compatible)
        storage: Cover image storage
    """
    token_manager = TokenManager(
        secret_key=api_config.jwt_secret,
        algorithm=api_config.jwt_algorithm,
        expire_hours=api_config.access_token_expire_hours,
    )
    app.state.store = store
    app.state.token_manager = token_manager
    app.state.book_service = BookService(store, storage, rating_max_attempts=config.rating_max_attempts)
    app.state.account_service = AccountService(store, token_manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )
    logger.info("Starting Book Catalog API")

    db_manager = MongoDBManager(
        connection_url=config.mongodb_url,
        database_name=config.mongodb_database,
        books_collection=config.books_collection,
        users_collection=config.users_collection,
    )
    try:
        await db_manager.connect()
        logger.info("Database connection established")
    except CatalogError as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    storage = LocalImageStorage(config.images_dir, api_config.public_base_url)
    configure_services(app, db_manager, storage)

    yield

    # Shutdown
    logger.info("Shutting down Book Catalog API")
    await db_manager.disconnect()


# Create FastAPI application
app = FastAPI(
    title=api_config.api_title,
    description="""
    REST API for a rated book catalog.

    ## Features

    * **Books**: Browse all books, the best rated ones, or a single book
    * **Ownership**: Only the user who added a book can edit or delete it
    * **Ratings**: Every authenticated user can rate a book once (0 to 5)

    ## Authentication

    Sign up, log in, then send the returned token in the Authorization header:

    ```
    Authorization: Bearer your_token_here
    ```
    """,
    version=api_config.api_version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_credentials=api_config.cors_allow_credentials,
    allow_methods=api_config.cors_allow_methods,
    allow_headers=api_config.cors_allow_headers,
)

# Cover images
config.get_images_path().mkdir(parents=True, exist_ok=True)
app.mount("/images", StaticFiles(directory=config.images_dir), name="images")


# Exception handlers
@app.exception_handler(CatalogError)
async def catalog_exception_handler(request: Request, exc: CatalogError):
    """Render catalog errors with their stable kind."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.message,
            kind=exc.kind,
            reason=exc.reason,
            status_code=exc.status_code
        ).dict()
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests as invalid input."""
    fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error="Invalid request",
            kind="invalid_input",
            reason="invalid_payload",
            detail=", ".join(fields),
            status_code=status.HTTP_400_BAD_REQUEST
        ).dict()
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            kind=ERROR_KINDS.get(exc.status_code, "error"),
            status_code=exc.status_code
        ).dict(),
        headers=exc.headers
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            kind="error",
            detail=str(exc) if api_config.debug else None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        ).dict()
    )


# Dependencies
def get_book_service(request: Request) -> BookService:
    service = getattr(request.app.state, "book_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Book service not available"
        )
    return service


def get_account_service(request: Request) -> AccountService:
    service = getattr(request.app.state, "account_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Account service not available"
        )
    return service


async def to_image_upload(image) -> Optional[ImageUpload]:
    """Read an uploaded file into an ImageUpload; anything else means no image."""
    if not isinstance(image, StarletteUploadFile):
        return None
    data = await image.read()
    if not data:
        return None
    return ImageUpload(data=data, filename=image.filename or "image", content_type=image.content_type)


async def read_book_update(request: Request) -> Tuple[BookUpdate, Optional[ImageUpload]]:
    """
    Parse an update request.

    Multipart requests carry the fields as a JSON string in ``book`` next to
    an optional ``image`` file; other requests carry the fields as JSON.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        raw_fields = form.get("book")
        fields = parse_payload(BookUpdate, raw_fields) if raw_fields else BookUpdate()
        return fields, await to_image_upload(form.get("image"))

    try:
        payload = await request.json()
    except ValueError:
        raise InvalidInputError("Request body is not valid JSON", reason="invalid_payload")
    return parse_payload(BookUpdate, payload), None


# Health check endpoint (no authentication required)
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint."""
    store = getattr(request.app.state, "store", None)
    db_status = "unavailable"
    if store is not None:
        db_status = "healthy" if await store.ping() else "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=api_config.api_version,
        database_status=db_status
    )


# Auth endpoints
@app.post(
    "/api/auth/signup",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Auth"]
)
async def signup(body: SignupRequest, accounts: AccountService = Depends(get_account_service)):
    """Register a new user."""
    await accounts.signup(body.email, body.password)
    return MessageResponse(message="User created")


@app.post("/api/auth/login", response_model=LoginResponse, tags=["Auth"])
async def login(body: LoginRequest, accounts: AccountService = Depends(get_account_service)):
    """Exchange email and password for a bearer token."""
    return LoginResponse(**await accounts.login(body.email, body.password))


# Books endpoints
@app.get("/api/books", response_model=List[BookResponse], tags=["Books"])
async def get_books(books: BookService = Depends(get_book_service)):
    """Get all books."""
    try:
        result = await books.list_books()
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    return [BookResponse.from_book(book) for book in result]


@app.get("/api/books/bestrating", response_model=List[BookResponse], tags=["Books"])
async def get_best_rated_books(
    limit: Optional[int] = Query(None, ge=1, le=50),
    books: BookService = Depends(get_book_service)
):
    """
    Get the best-rated books, highest average first.

    - **limit**: Number of books to return (defaults to 3)
    """
    try:
        result = await books.top_rated(limit or api_config.best_rating_limit)
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    return [BookResponse.from_book(book) for book in result]


@app.get("/api/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def get_book(book_id: str, books: BookService = Depends(get_book_service)):
    """
    Get a single book by ID.

    - **book_id**: Book identifier (MongoDB ObjectId)
    """
    return BookResponse.from_book(await books.get_book(book_id))


@app.post(
    "/api/books",
    response_model=BookResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Books"]
)
async def create_book(
    book: str = Form(..., description="Book fields as a JSON string"),
    image: Optional[UploadFile] = File(None, description="Cover image (JPEG or PNG)"),
    user_id: str = Depends(get_current_user_id),
    books: BookService = Depends(get_book_service)
):
    """
    Add a book. The authenticated user becomes its owner and first rater.

    - **book**: JSON object with title, author, year, genre and an optional rating
    - **image**: Cover image file
    """
    upload = await to_image_upload(image)
    if upload is None:
        raise InvalidInputError("No image provided", reason="missing_image")

    fields = parse_payload(BookCreate, book)
    created = await books.create_book(user_id, fields, upload)
    return BookResponse.from_book(created)


@app.put("/api/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def update_book(
    book_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    books: BookService = Depends(get_book_service)
):
    """
    Update a book you own.

    Send either a JSON body with the fields to change, or a multipart form
    with the fields as a JSON string in ``book`` and a new ``image``.
    """
    fields, upload = await read_book_update(request)
    updated = await books.update_book(book_id, user_id, fields, upload)
    return BookResponse.from_book(updated)


@app.delete("/api/books/{book_id}", response_model=MessageResponse, tags=["Books"])
async def delete_book(
    book_id: str,
    user_id: str = Depends(get_current_user_id),
    books: BookService = Depends(get_book_service)
):
    """Delete a book you own, together with its cover image."""
    await books.delete_book(book_id, user_id)
    return MessageResponse(message="Book deleted")


@app.post("/api/books/{book_id}/rating", response_model=BookResponse, tags=["Books"])
async def rate_book(
    book_id: str,
    body: RatingRequest,
    user_id: str = Depends(get_current_user_id),
    books: BookService = Depends(get_book_service)
):
    """
    Rate a book once.

    - **rating**: Grade between 0 and 5
    """
    rated = await books.rate_book(book_id, user_id, body.rating)
    return BookResponse.from_book(rated)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=api_config.debug,
        log_level=api_config.log_level.lower()
    )
