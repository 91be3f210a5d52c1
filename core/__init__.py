"""
Core module for captcha-bridge.

Shared records, errors, configuration and logging used by the browser and
solver packages.

Submodules:
    config: Application settings (``SolverSettings``) via Pydantic.
    models: Widget, solution and task records.
    errors: ``CaptchaError`` hierarchy.
    logging_setup: Compressed rotating file + console logging with secret
        redaction.
"""
