from complaint_portal.routes import analytics, auth, chat, complaints, departments, notifications, users

ROUTERS = [auth.router, complaints.router, chat.router, notifications.router,
           departments.router, users.router, analytics.router]
