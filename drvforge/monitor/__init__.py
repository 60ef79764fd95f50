"""drvforge terminal output — Rich renderings of engine results.

Modules
-------
renderer
    ``ReportRenderer`` turns realization reports, build plans, build
    environments, bundles and publish results into Rich renderables.
"""
