"""Vault Cert Manager main entry point."""
from vault_cert_manager import main

if __name__ == '__main__':
    main.main()
