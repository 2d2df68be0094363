# Municipal Complaint Portal
# FastAPI + MongoDB + WebSocket rooms
