from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

app = FastAPI(title="Mock Payments Service")


class Payment(BaseModel):
    id: str
    amount_cents: int


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/payments", status_code=202)
async def create_payment(payment: Payment):
    if payment.amount_cents <= 0:
        return JSONResponse(status_code=400, content={"detail": "amount_cents must be positive"})
    return {"id": payment.id, "status": "accepted"}


# Run with: uvicorn mock_service.app:app --port 8081 --reload
