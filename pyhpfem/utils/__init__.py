from .meshgen import l_shape_mesh, structured_quad_mesh, structured_tri_mesh
