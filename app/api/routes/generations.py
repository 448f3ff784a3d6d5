from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from app.api.deps import (
    get_client_ip,
    get_current_user,
    get_prediction_provider,
    get_profile_service,
    get_storage,
)
from app.core.config import settings
from app.models.generation import Generation
from app.schemas.generations import GenerationOut, GenerationRequest, UploadOut
from app.services.auth.supabase import AuthUser
from app.services.generations.service import GenerationInput, GenerationService, list_generations
from app.services.image_generation import PredictionProvider
from app.services.profiles.service import ProfileService
from app.storage.base import Storage

router = APIRouter(prefix="/api", tags=["generations"])


def _generation_out(generation: Generation) -> GenerationOut:
    return GenerationOut(
        id=generation.id,
        logoUrl=generation.logo_url,
        logoDescription=generation.logo_description,
        destinationPrompt=generation.destination_prompt,
        resultUrl=generation.result_url,
        resultFileName=generation.result_file_name,
        status=generation.status,
        creditCost=generation.credit_cost,
        createdAt=generation.created_at.isoformat() if generation.created_at else None,
    )


def get_generation_service(
    profiles: ProfileService = Depends(get_profile_service),
    provider: PredictionProvider = Depends(get_prediction_provider),
    storage: Storage = Depends(get_storage),
) -> GenerationService:
    return GenerationService(profiles.db, provider, storage, profiles)


@router.post("/upload-images", response_model=UploadOut)
def upload_images(
    file: UploadFile | None = File(None),
    imageType: str | None = Form(None),
    promptText: str | None = Form(None),
    user: AuthUser = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service),
):
    """Upload a source logo; returns its public URL for the generation request."""
    # one byte past the limit is enough for upload_logo to reject the file
    content = file.file.read(settings.max_file_size_bytes + 1) if file is not None else None
    url = service.upload_logo(
        user.id,
        file.filename if file is not None else None,
        content,
        image_type=imageType,
        content_type=file.content_type if file is not None else None,
    )
    return {"success": True, "imageUrl": url}


@router.post("/put-logo-to-anything")
def put_logo_to_anything(
    body: GenerationRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    generation = service.generate(
        user.id,
        GenerationInput(
            logo_url=body.logo_url,
            logo_description=body.logo_description,
            destination_prompt=body.destination_prompt,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        ),
    )
    return {
        "success": True,
        "imageUrl": generation.result_url,
        "generationId": generation.id,
        "creditsRemaining": service.profiles.balance(user.id),
    }


@router.get("/generations", response_model=list[GenerationOut])
def get_generations(
    limit: int = Query(50, ge=1, le=200),
    user: AuthUser = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
):
    return [_generation_out(g) for g in list_generations(profiles.db, user.id, limit=limit)]
