"""Host network configuration, daemon commands, sudoers, path checks, user-mode networking and DNS zones."""