"""Run API Service.
"""

import os
import uvicorn
from marketplace import api_app


if __name__ == "__main__":
    uvicorn.run(
        api_app,
        host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000"))
    )
