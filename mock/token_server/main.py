from fastapi import FastAPI
from pydantic import BaseModel, Field
from pathlib import Path
from typing import Dict
import json
import os

app = FastAPI(title="Mock Token Server", version="1.0.0")
# Support both local development and Docker
SEED_FILE = Path("/token_stub/balances.json") if os.path.exists("/token_stub") else Path(__file__).resolve().parent / "balances.json"

balances: Dict[str, int] = json.loads(SEED_FILE.read_text()) if SEED_FILE.exists() else {}


class Transfer(BaseModel):
    sender: str
    to: str
    amount: int = Field(..., ge=0)


class TransferFrom(Transfer):
    spender: str


def move(sender: str, to: str, amount: int) -> bool:
    if balances.get(sender, 0) < amount:
        return False
    balances[sender] = balances.get(sender, 0) - amount
    balances[to] = balances.get(to, 0) + amount
    return True


@app.get("/health")
def health(): return {"status": "ok"}

@app.get("/token/balance")
def balance_of(account: str):
    return {"account": account, "balance": balances.get(account, 0)}

@app.post("/token/transfer")
def transfer(body: Transfer):
    return {"success": move(body.sender, body.to, body.amount)}

@app.post("/token/transfer-from")
def transfer_from(body: TransferFrom):
    # Allowances are not modelled; any spender may pull
    return {"success": move(body.sender, body.to, body.amount)}

@app.post("/token/mint")
def mint(account: str, amount: int):
    balances[account] = balances.get(account, 0) + amount
    return {"account": account, "balance": balances[account]}
