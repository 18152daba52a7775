from .forms import (ANY, Form, Func, Geom, MatrixForm, MatrixFormSurf, MatrixFormVol,
                    VectorForm, VectorFormSurf, VectorFormVol, WeakForm)
from .functions import Function1D, Function2D, SymbolicFunction1D
from .library import (DefaultJacobianDiffusion, DefaultMatrixFormSurf, DefaultMatrixFormVol,
                      DefaultResidualDiffusion, DefaultResidualSurf, DefaultResidualVol,
                      DefaultVectorFormSurf, DefaultVectorFormVol, DefaultWeakFormPoisson,
                      WeakFormPoissonNewton)
