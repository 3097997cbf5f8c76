"""Field lists and thresholds shared by the listener and the risk classifier."""

# Changing one of these fields makes an update HIGH risk
CRITICAL_FIELDS = frozenset({"password", "email", "role", "permissions", "status"})

# Personal data protected by the LGPD (CPF, RG and NIS are Brazilian national ids)
SENSITIVE_FIELDS = frozenset(
    {"cpf", "rg", "nis", "phone", "telefone", "address", "endereco", "salary", "salario"}
)

ELEVATED_ROLES = frozenset({"admin", "super_admin", "gestor", "coordenador"})

# Local business hours; anything outside [06:00, 22:00) is off-hours
BUSINESS_HOURS_START = 6
BUSINESS_HOURS_END = 22

DEFAULT_FIND_BY_USER_LIMIT = 100
