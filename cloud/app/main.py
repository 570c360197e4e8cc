from __future__ import annotations

import hashlib
from datetime import datetime

import sqlalchemy as sa
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from pydantic import BaseModel

from . import locks
from .db import SessionLocal, create_schema
from .models import Asset, Release
from .settings import API_TOKEN, PUBLIC_URL

app = FastAPI(title="releaseci Release Host")

# -------------------- Schemas --------------------

class CreateReleaseRequest(BaseModel):
    prerelease: bool = False

class ReleaseCreated(BaseModel):
    tag: str
    url: str
    prerelease: bool
    created: bool

class AssetUploaded(BaseModel):
    name: str
    sha256: str
    size: int
    status: str  # created|unchanged|replaced

class AssetInfo(BaseModel):
    name: str
    sha256: str
    size: int
    updated_at: datetime

class ReleaseResponse(BaseModel):
    tag: str
    url: str
    prerelease: bool
    created_at: datetime
    assets: list[AssetInfo]

# -------------------- Startup --------------------

@app.on_event("startup")
async def startup() -> None:
    await create_schema()

def release_url(request: Request, tag: str) -> str:
    base = PUBLIC_URL or str(request.base_url).rstrip("/")
    return f"{base}/releases/{tag}"

def require_token(authorization: str | None = Header(default=None)) -> None:
    if API_TOKEN is None:
        return
    if authorization != f"Bearer {API_TOKEN}":
        raise HTTPException(status_code=401, detail="Invalid or missing token")

async def get_release(s, tag: str) -> Release | None:
    res = await s.execute(sa.select(Release).where(Release.tag == tag))
    return res.scalar_one_or_none()

# -------------------- Endpoints --------------------

@app.put("/releases/{tag}", response_model=ReleaseCreated, dependencies=[Depends(require_token)])
async def create_release(tag: str, req: CreateReleaseRequest, request: Request):
    token = await locks.acquire(tag)
    if token is None:
        raise HTTPException(status_code=409, detail=f"Release {tag} is busy")
    try:
        async with SessionLocal() as s:
            async with s.begin():
                release = await get_release(s, tag)
                created = release is None
                if created:
                    release = Release(tag=tag, prerelease=req.prerelease)
                    s.add(release)
                else:
                    release.prerelease = req.prerelease
    finally:
        await locks.release(tag, token)

    return ReleaseCreated(tag=tag, url=release_url(request, tag), prerelease=req.prerelease, created=created)

@app.put("/releases/{tag}/assets/{name}", response_model=AssetUploaded, dependencies=[Depends(require_token)])
async def upload_asset(
    tag: str,
    name: str,
    request: Request,
    x_asset_sha256: str | None = Header(default=None),
):
    if "/" in name or name in ("", ".", ".."):
        raise HTTPException(status_code=400, detail=f"Invalid asset name: {name!r}")

    content = await request.body()
    digest = hashlib.sha256(content).hexdigest()
    if x_asset_sha256 is not None and x_asset_sha256.lower() != digest:
        raise HTTPException(status_code=400, detail="Asset digest does not match X-Asset-Sha256")

    # uploads for one tag are serialized so replacing an asset never races a second upload
    token = await locks.acquire(tag)
    if token is None:
        raise HTTPException(status_code=409, detail=f"Release {tag} is busy")
    try:
        async with SessionLocal() as s:
            async with s.begin():
                release = await get_release(s, tag)
                if not release:
                    raise HTTPException(status_code=404, detail="Release not found")

                res = await s.execute(
                    sa.select(Asset).where(Asset.release_id == release.id, Asset.name == name)
                )
                asset = res.scalar_one_or_none()
                if asset is None:
                    s.add(Asset(release_id=release.id, name=name, sha256=digest, size=len(content), content=content))
                    status = "created"
                elif asset.sha256 == digest:
                    status = "unchanged"
                else:
                    asset.sha256 = digest
                    asset.size = len(content)
                    asset.content = content
                    status = "replaced"
    finally:
        await locks.release(tag, token)

    return AssetUploaded(name=name, sha256=digest, size=len(content), status=status)

@app.get("/releases/{tag}", response_model=ReleaseResponse)
async def read_release(tag: str, request: Request):
    async with SessionLocal() as s:
        release = await get_release(s, tag)
        if not release:
            raise HTTPException(status_code=404, detail="Release not found")
        res = await s.execute(
            sa.select(Asset.name, Asset.sha256, Asset.size, Asset.updated_at)
            .where(Asset.release_id == release.id)
            .order_by(Asset.name)
        )
        assets = [AssetInfo(name=n, sha256=h, size=sz, updated_at=u) for n, h, sz, u in res.all()]

    return ReleaseResponse(
        tag=release.tag,
        url=release_url(request, tag),
        prerelease=release.prerelease,
        created_at=release.created_at,
        assets=assets,
    )

@app.get("/releases/{tag}/assets/{name}")
async def download_asset(tag: str, name: str):
    async with SessionLocal() as s:
        res = await s.execute(
            sa.select(Asset.content)
            .join(Release, Release.id == Asset.release_id)
            .where(Release.tag == tag, Asset.name == name)
        )
        content = res.scalar_one_or_none()
    if content is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    return Response(content=content, media_type="application/octet-stream")
