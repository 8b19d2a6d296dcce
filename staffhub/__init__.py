"""StaffHub: organization hierarchy and staff identity API.

To build the Flask app:
    from staffhub.flask_app import create_app

To use the identity gateway on its own:
    from staffhub.core.identity import IdentityGateway
"""
# Note: flask_app is not imported here so the core and gateway can be used
# without building an application.
