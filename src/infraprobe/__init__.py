"""infraprobe - Terraform deployment verification harness

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Security by design (no credentials in code or logs)
- Fail fast, but always tear down what was provisioned

infraprobe provisions infrastructure with Terraform, checks it over SSH and
Ansible, then destroys it again.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
