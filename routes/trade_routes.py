from fastapi import APIRouter, Depends
from typing import List, Optional
from models.trade_models import TradeDetails, TradeProposal, TradeResponse
from models.user_models import CallerContext
from dependencies import get_current_user, get_trade_engine
from trade_engine import TradeEngine

# Engine failures are TradeError subclasses, turned into responses by main.py
router = APIRouter(prefix="/trades", tags=["trades"])


@router.post("", response_model=TradeDetails, status_code=201)
async def propose_trade(
    proposal: Optional[TradeProposal] = None,
    caller: CallerContext = Depends(get_current_user),
    engine: TradeEngine = Depends(get_trade_engine),
):
    proposal = proposal or TradeProposal()
    return await engine.propose_trade(caller, proposal.targetBookId, proposal.offeredBookIds)


@router.get("/incoming", response_model=List[TradeDetails])
async def get_incoming_trades(
    caller: CallerContext = Depends(get_current_user),
    engine: TradeEngine = Depends(get_trade_engine),
):
    return await engine.incoming_trades(caller)


@router.get("/outgoing", response_model=List[TradeDetails])
async def get_outgoing_trades(
    caller: CallerContext = Depends(get_current_user),
    engine: TradeEngine = Depends(get_trade_engine),
):
    return await engine.outgoing_trades(caller)


@router.put("/{trade_id}", response_model=TradeDetails)
async def respond_to_trade(
    trade_id: str,
    response: Optional[TradeResponse] = None,
    caller: CallerContext = Depends(get_current_user),
    engine: TradeEngine = Depends(get_trade_engine),
):
    response = response or TradeResponse()
    return await engine.respond_to_trade(caller, trade_id, response.status)
