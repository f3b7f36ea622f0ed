"""Platform factory: tenant provisioning control plane."""
