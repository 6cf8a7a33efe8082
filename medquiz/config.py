import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    # Service role key: table access for the backend and the auth admin API
    SUPABASE_KEY = os.getenv("SUPABASE_KEY")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY") or SUPABASE_KEY

    # PAYSTACK CONFIG
    PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY")
    PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
    SUBSCRIPTION_AMOUNT = int(os.getenv("SUBSCRIPTION_AMOUNT", 100000)) # kobo
    SUBSCRIPTION_PLAN_NAME = os.getenv("SUBSCRIPTION_PLAN_NAME", "Monthly Subscription")
    SUBSCRIPTION_DAYS = int(os.getenv("SUBSCRIPTION_DAYS", 365))

    # Admin overrides (update-subscription-status defaults)
    ADMIN_ACTIVE_DAYS = int(os.getenv("ADMIN_ACTIVE_DAYS", 30))
    TRIAL_DAYS = int(os.getenv("TRIAL_DAYS", 3))

    QUIZ_DURATION_SECONDS = int(os.getenv("QUIZ_DURATION_SECONDS", 30 * 60))
    ADMIN_REFRESH_SECONDS = float(os.getenv("ADMIN_REFRESH_SECONDS", 15))

    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
    PORT = int(os.getenv("PORT", 8080))
