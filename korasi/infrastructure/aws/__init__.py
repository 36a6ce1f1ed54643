"""
AWS provisioning
"""
from .ec2 import Ec2Provisioner, fetch_public_ip, encode_user_data

__all__ = ["Ec2Provisioner", "fetch_public_ip", "encode_user_data"]
