from fastapi import FastAPI
from streamflow_proxy.main import app as streamflow_app  # Import streamflow app

# Initialize the main FastAPI application, sharing the streamflow lifespan (outbound HTTP client)
main_app = FastAPI(lifespan=streamflow_app.router.lifespan_context)

# Manually add only the API routes from streamflow_app, leaving out the docs
for route in streamflow_app.routes:
    if route.path not in ("/docs", "/docs/oauth2-redirect", "/redoc", "/openapi.json"):
        main_app.router.routes.append(route)

# Run the main app
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(main_app, host="0.0.0.0", port=7860)
