"""Integral helpers shared by the default H1 forms (vectorised over basis functions)."""


def int_F_v(wt, F, v):
    return (wt * F * v.val).sum(axis=-1)


def int_u_v(wt, u, v):
    return (wt * u.val * v.val).sum(axis=-1)


def int_F_u_v(wt, F, u, v):
    return (wt * F * u.val * v.val).sum(axis=-1)


def int_grad_u_grad_v(wt, u, v):
    return (wt * (u.dx * v.dx + u.dy * v.dy)).sum(axis=-1)


def int_F_grad_u_grad_v(wt, F, u, v):
    return (wt * F * (u.dx * v.dx + u.dy * v.dy)).sum(axis=-1)

