"""Live notification push."""
import logging
from fastapi import APIRouter, Header, Query, WebSocket, WebSocketDisconnect, status

from app.services.ws_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket('/ws/notifications/{user_id}')
async def notifications_socket(
    websocket: WebSocket,
    user_id: int,
    x_user_id: int | None = Header(None),
    as_user: int | None = Query(None),
):
    """Receives points notifications (transfers, approvals) as they are committed.

    Browsers cannot set headers on a socket, so the caller may identify with
    `?as_user=` instead of `X-User-Id`. Either must match the stream's owner.
    """
    caller = x_user_id if x_user_id is not None else as_user
    if caller != user_id:
        logger.warning(f'Rejected notification socket for user {user_id} from caller {caller}')
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket, user_id)
    try:
        while True:
            # Wait for any message (ping, etc.) to keep connection alive
            message = await websocket.receive()
            if message.get('type') == 'websocket.disconnect':
                break
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f'WebSocket error for user {user_id}: {e}')
    finally:
        manager.disconnect(websocket, user_id)
