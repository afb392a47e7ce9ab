"""Launch the assessment API under uvicorn using the env-driven settings."""
import uvicorn

from excel_assessment.config import settings


def main():
    uvicorn.run(
        "excel_assessment.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
