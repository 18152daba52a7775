from .quadrature import edge, line_rule, volume
