"""
Solvers module for captcha-bridge.

Delegates detected widgets to the CapMonster Cloud solving service.

Submodules:
    capmonster: ``CapMonsterClient`` -- async API client with the poll loop,
        bounded retries and incorrect-token reporting.
    provider: ``SolutionOrchestrator`` -- concurrent per-widget fan-out and
        the host-facing ``get_solutions`` function.
"""
